"""
Shared service utilities.

- http.py    - ``requests`` sessions (transport retry, or a single attempt for paged
              and polled endpoints)
- paging.py  - offset-paged fetching with cooldown retry and per-page persistence
- pacing.py  - minimum-interval rate limiter for public APIs
"""
