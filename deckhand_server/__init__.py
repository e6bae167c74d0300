"""
Deckhand server module.

Thin FastAPI surface over the Deckhand controllers. All decisions live
in deckhand_controller; this package only authenticates requests and
serializes results.
"""
