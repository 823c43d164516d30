import cv2
import numpy as np
import pytest

import backend.routers.core as core
import database.db as db
from backend.config import DESCRIPTOR_SCALE
from fakes import descriptor

ALICE = descriptor(0.0)
BOB = descriptor(5.0, index=1)


def _jpeg() -> bytes:
    ok, buf = cv2.imencode(".jpg", np.zeros((32, 32, 3), dtype=np.uint8))
    assert ok
    return buf.tobytes()


def _insert_student(full_name: str, vector=None, *, department="CS", year_level="2") -> int:
    student_id = db.add_student(full_name, department, year_level)
    if vector is not None:
        db.set_face_descriptors("student", student_id, list(vector), images_count=5)
    return student_id


def _insert_schedule(**overrides) -> int:
    data = {
        "teacher_id": "1",
        "teacher_name": "Ms. Reyes",
        "subject_name": "Data Structures",
        "course_code": "CS201",
        "department": "CS",
        "year_level": "2",
        "schedule": "MWF 9:00-10:00",
        "building_room": "B-204",
    }
    data.update(overrides)
    return db.add_class_schedule(data)


def test_health(client):
    res = client.get("/health")
    assert res.status_code == 200
    assert res.json() == {"status": "ok"}


def test_debug_dbpath_disabled_by_default(client):
    res = client.get("/debug/dbpath")
    assert res.status_code == 404
    assert res.json()["detail"] == "Not found."


def test_debug_dbpath_when_enabled(client, monkeypatch):
    monkeypatch.setattr(core, "ENABLE_DEBUG_ENDPOINTS", True)
    res = client.get("/debug/dbpath")
    assert res.status_code == 200
    assert "db_path" in res.json()


def test_recognition_config(client):
    res = client.get("/config/recognition")
    assert res.status_code == 200
    payload = res.json()
    assert payload["models_loaded"] is True
    assert payload["match_threshold"] == 0.6
    assert payload["descriptor_length"] == 128


def test_create_list_and_delete_students(client):
    res = client.post("/students", json={"full_name": "Alice", "department": "CS", "year_level": "2"})
    assert res.status_code == 200
    alice = res.json()
    assert alice["id"] >= 1
    assert alice["face_trained"] is False

    client.post("/students", json={"full_name": "Dave", "department": "IT", "year_level": "2"})

    rows = client.get("/students", params={"department": "CS"}).json()
    assert [r["full_name"] for r in rows] == ["Alice"]
    assert "face_descriptors" not in rows[0]

    assert client.get(f"/students/{alice['id']}").status_code == 200
    assert client.delete(f"/students/{alice['id']}").status_code == 200
    assert client.get(f"/students/{alice['id']}").status_code == 404
    assert client.delete(f"/students/{alice['id']}").status_code == 404


def test_student_requires_fields(client):
    res = client.post("/students", json={"full_name": "  ", "department": "CS", "year_level": "2"})
    assert res.status_code == 400


def test_face_upload_trains_student(client, fake_model):
    fake_model.faces = [descriptor(0.3)]
    student_id = _insert_student("Alice")

    files = [("files", (f"img_{i}.jpg", _jpeg(), "image/jpeg")) for i in range(5)]
    res = client.post(f"/students/{student_id}/faces", files=files)
    assert res.status_code == 200
    body = res.json()
    assert body["saved"] == 5
    assert body["training"] == "started"

    # background task runs before the test client returns
    row = db.get_student_by_id(student_id)
    assert row["face_trained"] is True
    assert row["face_descriptors"][0] == pytest.approx(DESCRIPTOR_SCALE)

    status = client.get("/train/status").json()
    assert status["state"] == "success"
    assert any(log["action"] == "Face Training" for log in client.get("/activity-logs").json()["rows"])


def test_face_upload_rejects_non_images(client):
    student_id = _insert_student("Alice")
    files = [("files", ("notes.txt", b"hello", "text/plain"))]
    res = client.post(f"/students/{student_id}/faces", files=files)
    assert res.status_code == 400

    res = client.post("/students/999/faces", files=[("files", ("a.jpg", _jpeg(), "image/jpeg"))])
    assert res.status_code == 404


def test_teachers_unique_email(client):
    payload = {"full_name": "Ms. Reyes", "department": "CS", "email": "Reyes@Example.edu"}
    res = client.post("/teachers", json=payload)
    assert res.status_code == 200
    assert res.json()["email"] == "reyes@example.edu"

    res = client.post("/teachers", json=payload)
    assert res.status_code == 409

    assert len(client.get("/teachers").json()) == 1
    assert client.get("/teachers/999").status_code == 404


def test_schedules_crud(client):
    res = client.post(
        "/schedules",
        json={"teacher_name": "Ms. Reyes", "subject_name": "Data Structures", "department": "CS", "year_level": "2"},
    )
    assert res.status_code == 200
    schedule_id = res.json()["id"]

    assert client.get(f"/schedules/{schedule_id}").json()["subject_name"] == "Data Structures"
    assert len(client.get("/schedules").json()) == 1
    assert client.delete(f"/schedules/{schedule_id}").status_code == 200
    assert client.delete(f"/schedules/{schedule_id}").status_code == 404

    res = client.post("/schedules", json={"teacher_name": "X", "subject_name": "", "department": "CS", "year_level": "2"})
    assert res.status_code == 400


def test_session_flow_creates_then_updates_document(client, fake_model):
    alice_id = _insert_student("Alice", ALICE)
    bob_id = _insert_student("Bob", BOB)
    _insert_student("Carol")
    _insert_student("Dave", ALICE, department="IT")
    schedule_id = _insert_schedule()

    res = client.post("/attendance/session", json={"schedule_id": schedule_id})
    assert res.status_code == 200
    state = res.json()
    assert state["gallery_size"] == 2
    assert state["stats"] == {"present": 0, "absent": 2, "late": 0, "total": 2}

    fake_model.faces = [descriptor(0.3)]
    res = client.post("/attendance/session/frame", files={"file": ("frame.jpg", _jpeg(), "image/jpeg")})
    assert res.status_code == 200
    body = res.json()
    assert [r["student_id"] for r in body["marked"]] == [alice_id]
    assert body["faces"][0]["confidence"] == pytest.approx(0.7)

    res = client.patch(f"/attendance/session/records/{bob_id}", json={"status": "late"})
    assert res.status_code == 200
    assert res.json()["stats"]["late"] == 1

    res = client.post("/attendance/session/save")
    assert res.status_code == 200
    saved = res.json()
    assert saved["created"] is True
    attendance_id = saved["attendance_id"]

    doc = client.get(f"/attendance/{attendance_id}").json()
    assert doc["class_schedule"]["subject_name"] == "Data Structures"
    assert doc["class_schedule"]["subject_id"] == str(schedule_id)
    assert (doc["present_count"], doc["late_count"], doc["absent_count"]) == (1, 1, 0)
    bob = next(r for r in doc["attendance_records"] if r["student_id"] == bob_id)
    assert bob["confidence"] == 0.0

    res = client.post("/attendance/session/save")
    assert res.json()["created"] is False
    assert res.json()["attendance_id"] == attendance_id
    assert len(client.get("/attendance").json()) == 1
    assert len(client.get("/attendance", params={"schedule_id": str(schedule_id)}).json()) == 1
    assert client.get("/attendance", params={"date": "1999-01-01"}).json() == []


def test_resume_saved_document(client, fake_model):
    _insert_student("Alice", ALICE)
    schedule_id = _insert_schedule()
    client.post("/attendance/session", json={"schedule_id": schedule_id})
    attendance_id = client.post("/attendance/session/save").json()["attendance_id"]

    # the schedule may be gone; the document snapshot is enough
    client.delete(f"/schedules/{schedule_id}")
    client.delete("/attendance/session")

    res = client.post("/attendance/session", json={"attendance_id": attendance_id})
    assert res.status_code == 200
    assert res.json()["attendance_id"] == attendance_id

    fake_model.faces = [ALICE]
    client.post("/attendance/session/frame", files={"file": ("frame.jpg", _jpeg(), "image/jpeg")})
    res = client.post("/attendance/session/save")
    assert res.json()["created"] is False
    assert client.get(f"/attendance/{attendance_id}").json()["present_count"] == 1


def test_session_errors_map_to_status_codes(client, api_session):
    assert client.post("/attendance/session/save").status_code == 400
    assert client.post("/attendance/session/start").status_code == 400
    assert client.post("/attendance/session", json={}).status_code == 400
    assert client.post("/attendance/session", json={"schedule_id": 999}).status_code == 404
    assert client.post("/attendance/session", json={"attendance_id": 999}).status_code == 404

    schedule_id = _insert_schedule()
    _insert_student("Alice", ALICE)
    client.post("/attendance/session", json={"schedule_id": schedule_id})
    assert client.patch("/attendance/session/records/999", json={"status": "late"}).status_code == 404
    assert client.patch("/attendance/session/records/1", json={"status": "excused"}).status_code == 422

    api_session.model_provider = lambda: None
    res = client.post("/attendance/session/start")
    assert res.status_code == 503


def test_frame_validation(client):
    schedule_id = _insert_schedule()
    _insert_student("Alice", ALICE)
    client.post("/attendance/session", json={"schedule_id": schedule_id})

    res = client.post("/attendance/session/frame", files={"file": ("a.gif", b"GIF89a", "image/gif")})
    assert res.status_code == 400
    res = client.post("/attendance/session/frame", files={"file": ("a.jpg", b"not-an-image", "image/jpeg")})
    assert res.status_code == 400
    assert res.json()["detail"] == "Invalid image data."


def test_start_and_stop_scanning(client):
    schedule_id = _insert_schedule()
    _insert_student("Alice", ALICE)
    client.post("/attendance/session", json={"schedule_id": schedule_id})

    res = client.post("/attendance/session/start")
    assert res.status_code == 200
    assert res.json()["started"] is True
    assert client.get("/attendance/session").json()["scanning"] is True

    assert client.post("/attendance/session/stop").json()["stopped"] is True
    assert client.post("/attendance/session/stop").json()["stopped"] is False


def test_delete_attendance_document(client):
    schedule_id = _insert_schedule()
    _insert_student("Alice", ALICE)
    client.post("/attendance/session", json={"schedule_id": schedule_id})
    attendance_id = client.post("/attendance/session/save").json()["attendance_id"]

    assert client.delete(f"/attendance/{attendance_id}").status_code == 200
    assert client.get(f"/attendance/{attendance_id}").status_code == 404

    # next save starts a new document
    assert client.post("/attendance/session/save").json()["created"] is True


def test_train_run_without_images(client):
    res = client.post("/train/run")
    assert res.status_code == 200
    assert res.json()["ok"] is False
    assert client.post("/train/run", json={"kind": "student", "person_id": 5}).status_code == 404


def test_hard_reset_clears_everything(client, workspace):
    _insert_student("Alice", ALICE)
    _insert_schedule()
    faces = workspace / "faces" / "student" / "1"
    faces.mkdir(parents=True)
    (faces / "img_1.jpg").write_bytes(_jpeg())

    res = client.post("/admin/reset/hard")
    assert res.status_code == 200
    assert client.get("/students").json() == []
    assert client.get("/schedules").json() == []
    assert not faces.exists()

    logs = client.get("/activity-logs").json()["rows"]
    assert [log["action"] for log in logs] == ["System Reset"]
