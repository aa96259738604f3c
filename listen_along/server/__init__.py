"""HTTP API for driving alignment sessions from a browser client."""
