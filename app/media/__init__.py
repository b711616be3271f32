"""
Media app: derivative processing of uploaded pinball media.

This app provides:
- MediaFile and MediaAsset models for originals and their variations
- A MIME category taxonomy and per file type variation catalogs
- Durable per (phase, category) job queues backed by ProcessingJob rows
- Creation and optimization processors (image, video, DirectB2S, table)
- Celery consumers, periodic maintenance tasks and admin tooling
"""
