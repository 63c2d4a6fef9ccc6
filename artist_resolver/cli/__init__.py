"""Command-line tools for the artist resolver.

- ``python -m artist_resolver.cli resolve`` resolves a name or platform id.
- ``python -m artist_resolver.cli merge`` merges two canonical artists.
- ``python -m artist_resolver.cli export`` prints changed records as JSON.
"""
