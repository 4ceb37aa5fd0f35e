"""Transport bindings: stdio and streamable HTTP."""
