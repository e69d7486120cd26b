from lipsync_dispatch.blobs.blob_store import (
    Blob,
    BlobStore,
    FilesystemBlobStore,
    file_name_from_reference,
)

__all__ = ["Blob", "BlobStore", "FilesystemBlobStore", "file_name_from_reference"]
