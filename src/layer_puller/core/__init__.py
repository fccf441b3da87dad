"""Core pull machinery: types, sources and the fetch scheduler."""
