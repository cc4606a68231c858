"""
Tests for Publication Backend API endpoints.

Tests cover:
- Health check
- Publication create, get, update, delete
- Filtered listing, special issues, years and volumes
- PDF streaming (inline and attachment)
- Artifact exchange endpoints and the remote-proxy backend
- CORS
"""

from io import BytesIO

import pytest


def _create(client, form, pdf_bytes, content_type="application/pdf", filename="paper.pdf"):
    return client.post(
        "/publications",
        data=form,
        files={"pdf": (filename, BytesIO(pdf_bytes), content_type)},
    )


class TestHealthCheck:
    def test_health_check_returns_ok(self, client):
        """Health check should report status and the active backend."""
        response = client.get("/healthz")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "backend": "file"}


class TestCreatePublication:
    def test_create_with_pdf(self, client, publication_form, sample_pdf, test_dirs):
        """Creating with all fields and a PDF returns the record with camelCase keys."""
        with open(sample_pdf, "rb") as f:
            response = client.post(
                "/publications",
                data=publication_form,
                files={"pdf": ("paper.pdf", f, "application/pdf")},
            )
        assert response.status_code == 201

        body = response.json()
        assert body["message"] == "Publication added successfully with PDF and XML created."
        assert body["warnings"] == []
        data = body["data"]
        assert data["year"] == 2022
        assert data["issue"] == 3
        assert data["volume"] == "12"
        assert data["isSpecialIssue"] is False
        assert data["doi"] == "10.1234/shelf.2022.3"
        assert data["artifactContentType"] == "application/pdf"
        assert data["hasArtifact"] is True
        assert "createdAt" in data and "updatedAt" in data

    def test_create_without_pdf(self, client, publication_form):
        """Creating without a PDF should fail validation."""
        response = client.post("/publications", data=publication_form)
        assert response.status_code == 400
        assert "PDF" in response.json()["detail"]

    def test_create_missing_field(self, make_client, publication_form, pdf_bytes):
        """Missing required fields fail and create nothing."""
        client = make_client()
        publication_form.pop("author")
        response = _create(client, publication_form, pdf_bytes)
        assert response.status_code == 400
        assert client.get("/publications").json() == []

    def test_create_with_non_pdf(self, make_client, publication_form):
        """A non-PDF upload is rejected and creates nothing."""
        client = make_client()
        response = _create(client, publication_form, b"not a pdf", "text/plain", "test.txt")
        assert response.status_code == 415
        assert "PDF" in response.json()["detail"]
        assert client.get("/publications").json() == []

    def test_create_with_invalid_flag(self, make_client, publication_form, pdf_bytes):
        publication_form["isSpecialIssue"] = "maybe"
        response = _create(make_client(), publication_form, pdf_bytes)
        assert response.status_code == 400

    @pytest.mark.parametrize("field, value", [("year", "9" * 20), ("issue", "9" * 20), ("year", "-1")])
    def test_create_out_of_range_number(self, make_client, publication_form, pdf_bytes, tmp_path, field, value):
        """Numbers the record store cannot hold are rejected and leave no PDF behind."""
        client = make_client()
        publication_form[field] = value
        response = _create(client, publication_form, pdf_bytes)
        assert response.status_code == 400
        assert client.get("/publications").json() == []
        uploads = tmp_path / "uploads"
        assert not uploads.exists() or list(uploads.iterdir()) == []

    def test_special_issue_defaults_to_false(self, make_client, publication_form, pdf_bytes):
        publication_form.pop("isSpecialIssue")
        publication_form.pop("doi")
        response = _create(make_client(), publication_form, pdf_bytes)
        assert response.status_code == 201
        assert response.json()["data"]["isSpecialIssue"] is False
        assert response.json()["data"]["doi"] is None

    def test_sidecar_written_next_to_artifacts(self, make_client, make_settings, publication_form, pdf_bytes, tmp_path):
        client = make_client()
        publication_id = _create(client, publication_form, pdf_bytes).json()["data"]["id"]
        sidecar = tmp_path / "sidecars" / f"publication-{publication_id}.xml"
        assert sidecar.exists()
        assert f"<id>{publication_id}</id>" in sidecar.read_text(encoding="utf-8")

    def test_sidecar_disabled(self, make_client, publication_form, pdf_bytes, tmp_path):
        client = make_client(sidecar={"enabled": False})
        response = _create(client, publication_form, pdf_bytes)
        assert response.status_code == 201
        assert response.json()["message"] == "Publication added successfully with PDF."
        assert not (tmp_path / "sidecars").exists()


class TestGetPublication:
    def test_get_existing(self, make_client, publication_form, pdf_bytes):
        client = make_client()
        created = _create(client, publication_form, pdf_bytes).json()["data"]
        response = client.get(f"/publications/{created['id']}")
        assert response.status_code == 200
        assert response.json() == created

    def test_get_invalid_id(self, client):
        """Malformed ids are a client error."""
        response = client.get("/publications/not-an-id")
        assert response.status_code == 400

    def test_get_nonexistent(self, client):
        response = client.get(f"/publications/{'0' * 32}")
        assert response.status_code == 404
        assert response.json() == {"detail": "Publication not found."}


class TestUpdatePublication:
    def test_partial_update(self, make_client, publication_form, pdf_bytes):
        """Only the supplied fields change."""
        client = make_client()
        created = _create(client, publication_form, pdf_bytes).json()["data"]

        response = client.put(f"/publications/{created['id']}", data={"title": "X"})
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["title"] == "X"
        for key in ("year", "volume", "issue", "author", "content", "doi", "isSpecialIssue"):
            assert data[key] == created[key]

    def test_replace_pdf(self, make_client, publication_form, pdf_bytes, tmp_path):
        """Replacing the PDF leaves exactly one artifact on disk."""
        client = make_client()
        created = _create(client, publication_form, pdf_bytes).json()["data"]
        replacement = pdf_bytes + b"\n% revised"

        response = client.put(
            f"/publications/{created['id']}",
            data={"isSpecialIssue": "true"},
            files={"pdf": ("v2.pdf", BytesIO(replacement), "application/pdf")},
        )
        assert response.status_code == 200
        assert response.json()["data"]["isSpecialIssue"] is True
        assert len(list((tmp_path / "uploads").iterdir())) == 1
        assert client.get(f"/view-pdf/{created['id']}").content == replacement

    def test_replace_with_non_pdf(self, make_client, publication_form, pdf_bytes):
        client = make_client()
        created = _create(client, publication_form, pdf_bytes).json()["data"]
        response = client.put(
            f"/publications/{created['id']}",
            files={"pdf": ("a.png", BytesIO(b"\x89PNG"), "image/png")},
        )
        assert response.status_code == 415
        assert client.get(f"/view-pdf/{created['id']}").content == pdf_bytes

    def test_update_nonexistent(self, client):
        response = client.put(f"/publications/{'a' * 32}", data={"title": "X"})
        assert response.status_code == 404

    def test_update_invalid_id(self, client):
        response = client.put("/publications/123", data={"title": "X"})
        assert response.status_code == 400

    def test_json_update(self, make_client, publication_form, pdf_bytes):
        """A JSON body is applied like form fields, including native booleans."""
        client = make_client()
        created = _create(client, publication_form, pdf_bytes).json()["data"]

        response = client.put(
            f"/publications/{created['id']}",
            json={"title": "Revised Title", "issue": 4, "isSpecialIssue": True},
        )
        assert response.status_code == 200
        data = response.json()["data"]
        assert data["title"] == "Revised Title"
        assert data["issue"] == 4
        assert data["isSpecialIssue"] is True
        assert data["author"] == created["author"]
        assert client.get(f"/publications/{created['id']}").json()["title"] == "Revised Title"

    def test_json_update_invalid_value(self, make_client, publication_form, pdf_bytes):
        client = make_client()
        created = _create(client, publication_form, pdf_bytes).json()["data"]
        response = client.put(f"/publications/{created['id']}", json={"year": "soon"})
        assert response.status_code == 400
        assert client.get(f"/publications/{created['id']}").json()["year"] == created["year"]

    def test_malformed_json_rejected(self, make_client, publication_form, pdf_bytes):
        client = make_client()
        created = _create(client, publication_form, pdf_bytes).json()["data"]
        for body in (b"{not json", b'["title", "X"]'):
            response = client.put(
                f"/publications/{created['id']}",
                content=body,
                headers={"Content-Type": "application/json"},
            )
            assert response.status_code == 400

    def test_unsupported_body_type_rejected(self, make_client, publication_form, pdf_bytes):
        """A body the service cannot read is refused rather than reported as updated."""
        client = make_client()
        created = _create(client, publication_form, pdf_bytes).json()["data"]
        response = client.put(
            f"/publications/{created['id']}",
            content=b"title=X",
            headers={"Content-Type": "text/plain"},
        )
        assert response.status_code == 415
        assert client.get(f"/publications/{created['id']}").json()["title"] == created["title"]

    def test_out_of_range_year_rejected(self, make_client, publication_form, pdf_bytes):
        client = make_client()
        created = _create(client, publication_form, pdf_bytes).json()["data"]
        response = client.put(f"/publications/{created['id']}", data={"year": "9" * 20})
        assert response.status_code == 400


class TestDeletePublication:
    def test_delete_then_delete_again(self, make_client, publication_form, pdf_bytes, tmp_path):
        client = make_client()
        created = _create(client, publication_form, pdf_bytes).json()["data"]

        response = client.delete(f"/publications/{created['id']}")
        assert response.status_code == 200
        assert response.json()["message"] == "Publication deleted successfully."
        assert response.json()["data"]["id"] == created["id"]
        assert list((tmp_path / "uploads").iterdir()) == []
        assert list((tmp_path / "sidecars").iterdir()) == []

        assert client.delete(f"/publications/{created['id']}").status_code == 404
        assert client.get(f"/publications/{created['id']}").status_code == 404


class TestListing:
    @pytest.fixture
    def seeded(self, make_client, publication_form, pdf_bytes):
        client = make_client()
        rows = [
            ("2021", "A", "1", "false"),
            ("2021", "B", "2", "true"),
            ("2022", "C", "1", "true"),
            ("2022", "C", "2", "false"),
        ]
        for year, volume, issue, special in rows:
            form = dict(publication_form, year=year, volume=volume, issue=issue, isSpecialIssue=special)
            assert _create(client, form, pdf_bytes).status_code == 201
        return client

    def test_list_all(self, seeded):
        assert len(seeded.get("/publications").json()) == 4

    def test_list_filtered(self, seeded):
        response = seeded.get("/publications", params={"isSpecialIssue": "true", "year": "2022"})
        assert response.status_code == 200
        data = response.json()
        assert len(data) == 1
        assert data[0]["year"] == 2022 and data[0]["isSpecialIssue"] is True

    def test_list_by_volume_and_issue(self, seeded):
        data = seeded.get("/publications", params={"volume": "C", "issue": "2"}).json()
        assert [(row["year"], row["issue"]) for row in data] == [(2022, 2)]

    def test_list_bad_year(self, seeded):
        assert seeded.get("/publications", params={"year": "abc"}).status_code == 400

    def test_special_issues(self, seeded):
        data = seeded.get("/special-issues").json()
        assert {row["volume"] for row in data} == {"B", "C"}
        assert all(row["isSpecialIssue"] for row in data)
        assert len(seeded.get("/special-issues", params={"year": "2021"}).json()) == 1

    def test_years(self, seeded):
        assert sorted(seeded.get("/years").json()) == [2021, 2022]

    def test_volumes(self, seeded):
        assert sorted(seeded.get("/volumes", params={"year": "2021"}).json()) == ["A", "B"]

    def test_volumes_require_year(self, seeded):
        response = seeded.get("/volumes")
        assert response.status_code == 400
        assert response.json() == {"detail": "Year parameter is required."}


class TestPdfStreaming:
    def test_view_inline(self, make_client, publication_form, pdf_bytes):
        client = make_client()
        created = _create(client, publication_form, pdf_bytes).json()["data"]
        response = client.get(f"/view-pdf/{created['id']}")
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.headers["content-disposition"].startswith(
            'inline; filename="Measuring Shelf Life of Research Data.pdf"'
        )
        assert response.content == pdf_bytes

    def test_download_attachment(self, make_client, publication_form, pdf_bytes):
        client = make_client()
        created = _create(client, publication_form, pdf_bytes).json()["data"]
        response = client.get(f"/download-pdf/{created['id']}")
        assert response.status_code == 200
        assert response.headers["content-disposition"].startswith("attachment;")
        assert response.content == pdf_bytes

    def test_missing_file_on_disk(self, make_client, publication_form, pdf_bytes, tmp_path):
        client = make_client()
        created = _create(client, publication_form, pdf_bytes).json()["data"]
        for path in (tmp_path / "uploads").iterdir():
            path.unlink()
        response = client.get(f"/view-pdf/{created['id']}")
        assert response.status_code == 404

    def test_nonexistent_publication(self, client):
        assert client.get(f"/download-pdf/{'b' * 32}").status_code == 404
        assert client.get("/view-pdf/bad").status_code == 400

    def test_inline_backend_streams_blob(self, make_client, publication_form, pdf_bytes, tmp_path):
        client = make_client("inline")
        created = _create(client, publication_form, pdf_bytes).json()["data"]
        assert client.get(f"/download-pdf/{created['id']}").content == pdf_bytes
        assert not (tmp_path / "uploads").exists() or list((tmp_path / "uploads").iterdir()) == []


class TestArtifactExchange:
    def test_store_fetch_release(self, make_client, pdf_bytes):
        client = make_client()
        response = client.post("/artifacts", files={"pdf": ("a.pdf", BytesIO(pdf_bytes), "application/pdf")})
        assert response.status_code == 201
        ref = response.json()["ref"]

        assert client.get(f"/artifacts/{ref}").content == pdf_bytes
        assert client.delete(f"/artifacts/{ref}").json() == {"status": "released"}
        assert client.delete(f"/artifacts/{ref}").status_code == 200
        assert client.get(f"/artifacts/{ref}").status_code == 404

    def test_store_rejects_non_pdf(self, make_client):
        response = make_client().post("/artifacts", files={"pdf": ("a.txt", BytesIO(b"x"), "text/plain")})
        assert response.status_code == 415


class TestRemoteBackend:
    def test_publication_lifecycle_through_peer(self, make_client, peer_client, publication_form, pdf_bytes):
        """A remote-backed instance keeps its PDFs on the peer."""
        client = make_client("remote", remote_client=peer_client, remote={"base_url": "http://testserver"})
        assert client.get("/healthz").json()["backend"] == "remote"

        created = _create(client, publication_form, pdf_bytes)
        assert created.status_code == 201
        publication_id = created.json()["data"]["id"]
        assert client.get(f"/view-pdf/{publication_id}").content == pdf_bytes

        peer_uploads = peer_client.app.state.context.exchange.root
        assert len(list(peer_uploads.iterdir())) == 1

        assert client.delete(f"/publications/{publication_id}").status_code == 200
        assert list(peer_uploads.iterdir()) == []

    def test_remote_failure_creates_nothing(self, make_client, publication_form, pdf_bytes):
        import httpx

        failing = httpx.Client(
            base_url="http://peer",
            transport=httpx.MockTransport(lambda request: httpx.Response(503)),
        )
        client = make_client("remote", remote_client=failing, remote={"base_url": "http://peer"})
        response = _create(client, publication_form, pdf_bytes)
        assert response.status_code == 502
        assert client.get("/publications").json() == []


class TestCORS:
    def test_cors_headers_present(self, client):
        """CORS preflight should be answered for any origin."""
        response = client.options(
            "/healthz",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "GET",
            },
        )
        assert response.status_code == 200
        assert response.headers.get("access-control-allow-origin") in {"*", "http://localhost:3000"}
