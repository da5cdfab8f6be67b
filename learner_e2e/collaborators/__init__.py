"""External collaborators invoked through their CLIs."""
