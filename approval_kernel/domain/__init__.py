"""Pure domain layer of the approval kernel. ZERO I/O."""
