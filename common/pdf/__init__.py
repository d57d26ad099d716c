from .document_composer import DocumentComposer

__all__ = ['DocumentComposer']
