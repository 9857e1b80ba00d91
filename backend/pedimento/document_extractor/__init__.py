from pedimento.document_extractor.parser import DocumentParser, PageContent, ParsedDocument

__all__ = ["DocumentParser", "PageContent", "ParsedDocument"]
