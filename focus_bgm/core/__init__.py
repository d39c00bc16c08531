"""
Download pipeline.

The `DownloadManager` supervises one external downloader process per channel,
reports its progress and resolves the extracted audio file.
"""
