from conftest import auth_headers


def test_teacher_creates_class_and_student_joins_by_code(client, factory):
	teacher = factory.teacher()
	student = factory.user()

	created = client.post("/classes", json={"name": "  Grade 7A "}, headers=auth_headers(teacher))
	assert created.status_code == 201
	code = created.json()["class_code"]
	assert created.json()["name"] == "Grade 7A"
	assert created.json()["member_count"] == 0

	joined = client.post("/classes/join", json={"class_code": code.lower()}, headers=auth_headers(student))
	assert joined.status_code == 201
	assert joined.json()["member_count"] == 1

	again = client.post("/classes/join", json={"class_code": code}, headers=auth_headers(student))
	assert again.status_code == 400

	mine = client.get("/classes/mine", headers=auth_headers(student)).json()
	assert [c["class_code"] for c in mine] == [code]
	taught = client.get("/classes/mine", headers=auth_headers(teacher)).json()
	assert [c["class_code"] for c in taught] == [code]


def test_join_unknown_or_empty_code(client, factory):
	student = factory.user()
	assert client.post("/classes/join", json={"class_code": "ZZZZZZ"}, headers=auth_headers(student)).status_code == 404
	empty = client.post("/classes/join", json={"class_code": "  "}, headers=auth_headers(student))
	assert empty.status_code == 400
	assert empty.json() == {"error": "Class code is required"}


def test_leave_class(client, factory):
	teacher = factory.teacher()
	student = factory.user()
	clazz = factory.clazz(teacher, members=[student])

	assert client.delete(f"/classes/{clazz.id}/leave", headers=auth_headers(student)).json() == {"ok": True}
	assert client.get("/classes/mine", headers=auth_headers(student)).json() == []
	assert client.delete(f"/classes/{clazz.id}/leave", headers=auth_headers(student)).status_code == 404


def test_folder_names_are_unique_per_owner(client, factory):
	alice = factory.user()
	bob = factory.user()

	assert client.post("/folders", json={"name": "Animals"}, headers=auth_headers(alice)).status_code == 201
	dup = client.post("/folders", json={"name": "Animals"}, headers=auth_headers(alice))
	assert dup.status_code == 409
	assert dup.json() == {"error": "Folder already exists"}
	assert client.post("/folders", json={"name": "Animals"}, headers=auth_headers(bob)).status_code == 201


def test_vocabulary_belongs_to_folder_owner(client, factory):
	owner = factory.user()
	stranger = factory.user()
	folder = factory.folder(owner, words=())

	added = client.post(
		f"/folders/{folder.id}/vocabulary",
		json={"word": "猫", "vietnamese_translation": "con mèo", "language": "Chinese", "pinyin": "māo"},
		headers=auth_headers(owner),
	)
	assert added.status_code == 201
	assert added.json()["language"] == "chinese"
	assert added.json()["folder"] == folder.name

	bad_language = client.post(
		f"/folders/{folder.id}/vocabulary",
		json={"word": "chat", "vietnamese_translation": "con mèo", "language": "french"},
		headers=auth_headers(owner),
	)
	assert bad_language.status_code == 400

	listed = client.get(f"/folders/{folder.id}/vocabulary", headers=auth_headers(owner)).json()
	assert [v["word"] for v in listed] == ["猫"]
	assert client.get(f"/folders/{folder.id}/vocabulary", headers=auth_headers(stranger)).status_code == 403

	folders = client.get("/folders", headers=auth_headers(owner)).json()
	assert folders[0]["word_count"] == 1


def test_rename_folder(client, factory):
	owner = factory.user()
	folder = factory.folder(owner)
	taken = factory.folder(owner, words=()).name

	renamed = client.put(f"/folders/{folder.id}", json={"name": " Fruit "}, headers=auth_headers(owner))
	assert renamed.status_code == 200
	assert renamed.json()["name"] == "Fruit"
	assert renamed.json()["word_count"] == 3

	clash = client.put(f"/folders/{folder.id}", json={"name": taken}, headers=auth_headers(owner))
	assert clash.status_code == 409
	assert client.put(f"/folders/{folder.id}", json={"name": "  "}, headers=auth_headers(owner)).status_code == 400
	assert client.put(f"/folders/{folder.id}", json={"name": "Mine"}, headers=auth_headers(factory.user())).status_code == 403


def test_delete_folder_refused_while_a_quiz_uses_it(client, factory):
	teacher = factory.teacher()
	used = factory.folder(teacher)
	spare = factory.folder(teacher)
	factory.quiz(factory.clazz(teacher), used)

	refused = client.delete(f"/folders/{used.id}", headers=auth_headers(teacher))
	assert refused.status_code == 409
	assert refused.json() == {"error": "Folder is used by a quiz"}

	assert client.delete(f"/folders/{spare.id}", headers=auth_headers(teacher)).json() == {"success": True, "deleted_words": 3}
	assert [f["id"] for f in client.get("/folders", headers=auth_headers(teacher)).json()] == [used.id]


def test_edit_move_and_delete_vocabulary(client, factory):
	owner = factory.user()
	source = factory.folder(owner, words=("apple",))
	target = factory.folder(owner, words=())
	foreign = factory.folder(factory.user())
	headers = auth_headers(owner)
	word_id = client.get(f"/folders/{source.id}/vocabulary", headers=headers).json()[0]["id"]

	edited = client.put(
		f"/folders/{source.id}/vocabulary/{word_id}",
		json={"vietnamese_translation": " quả táo ", "ipa": "/ˈæp.əl/"},
		headers=headers,
	)
	assert edited.status_code == 200
	assert edited.json()["word"] == "apple"
	assert edited.json()["vietnamese_translation"] == "quả táo"
	assert edited.json()["ipa"] == "/ˈæp.əl/"

	empty = client.put(f"/folders/{source.id}/vocabulary/{word_id}", json={"word": ""}, headers=headers)
	assert empty.status_code == 400
	not_mine = client.put(f"/folders/{source.id}/vocabulary/{word_id}", json={"folder_id": foreign.id}, headers=headers)
	assert not_mine.status_code == 403

	moved = client.put(f"/folders/{source.id}/vocabulary/{word_id}", json={"folder_id": target.id}, headers=headers)
	assert moved.json()["folder"] == target.name
	assert client.get(f"/folders/{source.id}/vocabulary", headers=headers).json() == []

	# The word now lives in the target folder only
	assert client.delete(f"/folders/{source.id}/vocabulary/{word_id}", headers=headers).status_code == 404
	assert client.delete(f"/folders/{target.id}/vocabulary/{word_id}", headers=headers).json() == {"success": True}
	assert client.get(f"/folders/{target.id}/vocabulary", headers=headers).json() == []
