"""HTTP client and command-line interface for a remote Deckhand server."""
