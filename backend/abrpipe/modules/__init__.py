"""Pipeline modules.

- transcoding: source probing, quality ladder selection, rendition encoding,
  preview extraction, master manifest assembly and job orchestration
"""
