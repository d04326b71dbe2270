"""Service layer: document store, identity, AI generation and the recap job."""
