"""
Job Queue — Durable stage queues for the email triage pipeline.

- One queue per stage: email-fetch, email-analysis, email-response
- Per-user repeat registrations drive the recurring fetch
- Retries are re-enqueued with exponential backoff via a delayed set
- Supports Redis Streams (production) and in-memory asyncio primitives (dev/test)
"""
