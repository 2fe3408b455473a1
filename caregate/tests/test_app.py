from caregate.app.main import app


def test_app_title():
    assert app.title == "CareGate API"


def test_every_audience_is_tagged_in_openapi():
    paths = app.openapi()["paths"]
    tags = {tag for operations in paths.values() for operation in operations.values() for tag in operation.get("tags", [])}
    assert {"doctors", "patients", "records", "health"}.issubset(tags)
    assert paths["/records/patient/{patient_id}"]["get"]["tags"] == ["records"]
