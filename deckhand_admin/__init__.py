"""Local administration CLI for Deckhand."""
