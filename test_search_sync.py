from models import PROJECT_STATUS_DRAFT, PROJECT_STATUS_PUBLISHED, Project, ProjectTag, Tag
from search_client import PROJECTS_INDEX
from search_sync import build_search_document, load_published_documents
from errors import SearchUnavailableError


def test_document_for_published_project(seed):
    project = seed.get(Project, "p1")
    document = build_search_document(project)

    assert document["id"] == "p1"
    assert document["title"] == "Spring Song"
    assert document["searchable_content"] == "Spring Song A calm melody"
    assert document["tempo"] == 128
    assert document["key_signature"] == "G"
    assert document["duration"] == 0
    assert document["creator"] == "Bob Durand"
    assert document["creator_id"] == "u2"
    assert document["voicebank_name"] == "Teto"
    assert document["voicebank_id"] == "vb1"
    assert document["tag_ids"] == []
    assert document["likes_count"] == 0
    assert document["status"] == PROJECT_STATUS_PUBLISHED
    assert document["collection"] == "projects"


def test_no_document_unless_published(seed):
    project = seed.get(Project, "p1")
    project.status = PROJECT_STATUS_DRAFT
    assert build_search_document(project) is None
    assert build_search_document(None) is None


def test_defaults_for_missing_fields(seed):
    project = Project(id="bare", title=None, status=PROJECT_STATUS_PUBLISHED, tempo=None, key_signature=None)
    document = build_search_document(project)
    assert document["title"] == ""
    assert document["tempo"] == 120
    assert document["key_signature"] == "C"
    assert document["creator"] == ""
    assert document["creator_id"] is None
    assert document["voicebank_name"] == ""


def test_created_draft_is_not_indexed(db, search_client):
    db.add(Project(id="d1", title="Draft", status=PROJECT_STATUS_DRAFT))
    db.commit()
    search_client.add_documents.assert_not_called()
    search_client.delete_documents.assert_not_called()


def test_created_published_project_is_indexed(db, search_client):
    db.add(Project(id="n1", title="New", status=PROJECT_STATUS_PUBLISHED))
    db.commit()
    index_name, documents = search_client.add_documents.call_args.args
    assert index_name == PROJECTS_INDEX
    assert [d["id"] for d in documents] == ["n1"]


def test_unpublishing_removes_document(seed, search_client):
    project = seed.get(Project, "p1")
    project.status = PROJECT_STATUS_DRAFT
    seed.commit()

    search_client.add_documents.assert_not_called()
    search_client.delete_documents.assert_called_once_with(PROJECTS_INDEX, ["p1"])


def test_deleting_project_removes_document(seed, search_client):
    seed.delete(seed.get(Project, "p1"))
    seed.commit()
    search_client.delete_documents.assert_called_once_with(PROJECTS_INDEX, ["p1"])


def test_tag_changes_reindex_project(seed, search_client):
    tag = Tag(name="ballad")
    seed.add(tag)
    seed.flush()
    seed.add(ProjectTag(project_id="p1", tag_id=tag.id))
    seed.commit()

    documents = search_client.add_documents.call_args.args[1]
    assert documents[0]["id"] == "p1"
    assert documents[0]["tag_ids"] == [str(tag.id)]


def test_rollback_discards_pending_changes(seed, search_client):
    project = seed.get(Project, "p1")
    project.title = "Renamed"
    seed.flush()
    seed.rollback()
    seed.commit()
    search_client.add_documents.assert_not_called()


def test_index_outage_is_retried_then_swallowed(seed, search_client):
    search_client.add_documents.side_effect = SearchUnavailableError("connection refused")

    project = seed.get(Project, "p1")
    project.title = "Renamed"
    seed.commit()

    assert search_client.add_documents.call_count == 3
    seed.expire_all()
    assert seed.get(Project, "p1").title == "Renamed"


def test_index_recovers_on_retry(seed, search_client):
    search_client.add_documents.side_effect = [SearchUnavailableError("timeout"), {"taskUid": 9}]

    project = seed.get(Project, "p1")
    project.plays = 4
    seed.commit()

    assert search_client.add_documents.call_count == 2


def test_load_published_documents(seed):
    seed.add(Project(id="d2", title="Hidden", status=PROJECT_STATUS_DRAFT))
    seed.commit()
    assert [d["id"] for d in load_published_documents(seed)] == ["p1"]


def test_retagging_reindexes_project(seed, search_client):
    ballad, rock = Tag(name="ballad"), Tag(name="rock")
    seed.add_all([ballad, rock])
    seed.flush()
    link = ProjectTag(project_id="p1", tag_id=ballad.id)
    seed.add(link)
    seed.commit()
    search_client.reset_mock()

    link.tag_id = rock.id
    seed.commit()

    documents = search_client.add_documents.call_args.args[1]
    assert documents[0]["id"] == "p1"
    assert documents[0]["tag_ids"] == [str(rock.id)]


def test_moving_tag_link_reindexes_both_projects(seed, search_client):
    seed.add(Project(id="p2", title="Summer Song", status=PROJECT_STATUS_PUBLISHED))
    tag = Tag(name="ballad")
    seed.add(tag)
    seed.flush()
    link = ProjectTag(project_id="p1", tag_id=tag.id)
    seed.add(link)
    seed.commit()
    search_client.reset_mock()

    link.project_id = "p2"
    seed.commit()

    documents = {d["id"]: d for d in search_client.add_documents.call_args.args[1]}
    assert documents["p1"]["tag_ids"] == []
    assert documents["p2"]["tag_ids"] == [str(tag.id)]


def test_tag_ids_in_numeric_order(seed):
    seed.add_all([Tag(id=10, name="rock"), Tag(id=2, name="ballad")])
    seed.flush()
    seed.add_all([ProjectTag(project_id="p1", tag_id=10), ProjectTag(project_id="p1", tag_id=2)])
    seed.commit()

    seed.expire_all()
    assert build_search_document(seed.get(Project, "p1"))["tag_ids"] == ["2", "10"]


def test_commit_without_project_changes_schedules_nothing(seed, search_client):
    seed.add(Tag(name="unused"))
    seed.commit()
    search_client.add_documents.assert_not_called()
    search_client.delete_documents.assert_not_called()
