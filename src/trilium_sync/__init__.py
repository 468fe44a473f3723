"""Import, export and git synchronisation between file trees and a Trilium note store."""

__version__ = "0.1.0"
