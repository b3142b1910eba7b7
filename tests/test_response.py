from appserver.errors import AppError, status_text
from appserver.mime_types import DEFAULT_CONTENT_TYPE, lookup_content_type
from appserver.response import Response


def test_status_text():
    assert status_text(404) == "Not Found"
    assert status_text(299) == ""


def test_error_from_string():
    err = AppError.from_string("File missing status:403 log:could not stat /x")
    assert (err.message, err.status, err.log) == ("File missing", 403, "could not stat /x")
    err = AppError.from_string("Plain problem")
    assert (err.message, err.status, err.log) == ("Plain problem", 404, "Plain problem")
    assert AppError.from_string("Odd status:abc", fallback=418).status == 418


def test_error_body():
    resp = Response.from_error(AppError("Invalid user", 404, "User=lol not found"))
    assert resp.content == b'{"error":true,"status":404,"msg":"Not Found","cause":"Invalid user"}'
    assert resp.has_errors
    assert resp.content_limit().endswith("| User=lol not found")


def test_exec_body():
    resp = Response.from_exec("job", 2, "out", "err")
    assert resp.status == 206
    assert resp.content == (
        b'{"error":true,"status":206,"msg":"Partial Content","rc":2,"id":"job","stdOut":"out","stdErr":"err"}'
    )


def test_content_limit():
    resp = Response(200, b"x" * 500, "txt")
    assert len(resp.content_limit()) == 150
    assert resp.content_length() == 500


def test_content_types():
    assert lookup_content_type("json") == "application/json; charset=utf-8"
    assert lookup_content_type("a/b/photo.JPG") == "image/jpeg"
    assert lookup_content_type("index.html", "iso-8859-1") == "text/html; charset=iso-8859-1"
    assert lookup_content_type("txt", "") == "text/plain"
    assert lookup_content_type("mystery.zzz") == DEFAULT_CONTENT_TYPE
