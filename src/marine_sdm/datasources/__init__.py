"""External data source integrations.

Each subdirectory is one data source with a consistent structure:

    datasources/{name}/
    ├── __init__.py       # Public API re-exports
    ├── client.py         # API URLs, constants, rate limiting
    └── {feature}.py      # Fetch functions (one per endpoint/concept)

Sources:
  - worms/        WoRMS REST registry, paged by offset (taxonomy dump)
  - gbif/         GBIF backbone name matching and asynchronous occurrence downloads
  - environment   Locally downloaded monthly gridded files (one directory per dataset id)

Fetch functions return plain dicts/lists or ``schemas`` models. They never
decide what to keep; the rules live in ``curation/``.
"""
