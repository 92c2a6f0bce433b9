"""Request middleware: JWT identity, logging, timing, rate limits."""
