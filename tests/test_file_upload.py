"""
Upload validation and PDF text extraction.
"""
import pytest

from internmatch.core.errors import ValidationError
from internmatch.utils import file_upload


class TestExtractFromPdf:
    @pytest.mark.parametrize("exc", [KeyError("/Root"), TypeError("'NoneType' object is not subscriptable")])
    def test_malformed_pdf_is_a_validation_error(self, monkeypatch, exc):
        """Should report a broken PDF as a 400, not let the parser error escape."""
        def broken_reader(stream):
            raise exc

        monkeypatch.setattr(file_upload, "PdfReader", broken_reader)
        with pytest.raises(ValidationError, match="Error reading PDF"):
            file_upload.extract_from_pdf(b"%PDF-1.4 broken")

    def test_garbage_after_header(self):
        """Should reject bytes that only look like a PDF."""
        with pytest.raises(ValidationError):
            file_upload.extract_from_pdf(b"%PDF-1.4\nnot really a pdf")


class TestExtensions:
    def test_extension_is_lowercased(self):
        assert file_upload.get_file_extension("CV.PDF") == ".pdf"
        assert file_upload.get_file_extension("noext") == ""
