"""Transport interface, Google API transport and date helpers."""
