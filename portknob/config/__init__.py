"""Settings file schema, loader and errors."""
