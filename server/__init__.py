"""HTTP boundary for the puml2drawio converter."""
