"""Pure domain value objects. No I/O, no imports from db/, models/ or services/."""
