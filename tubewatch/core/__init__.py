"""
Core application engine.

The `SyncManager` refreshes the catalogue from the remote API, the
`DownloadSupervisor` drives the external downloader, and `metrics` holds the
baseline and ranking calculations both of them rely on.
"""
