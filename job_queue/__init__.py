"""
Job Queue — Decouples job producers from the worker pool.

- API and recap scanners PUBLISH job envelopes to a shared list
- Workers CONSUME them with a blocking pop and dispatch by tag
- Supports Redis lists (production) and in-memory asyncio.Queue (dev/tests)
"""
