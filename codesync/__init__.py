"""codesync - keep a Qdrant index of a source tree in sync with the filesystem.

Packages:
    ingest: scanning, chunking, content identity, store adapter, pipeline
    watch:  typed events, watchdog bridge, change queue, watcher lifecycle
"""
