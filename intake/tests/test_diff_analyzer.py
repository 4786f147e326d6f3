from intake.analysis import DiffMetrics, FileChange, FileStatus, FileClassifier, analyze_files


def _file(path, status=FileStatus.MODIFIED, added=5, removed=1):
    return FileChange(path=path, status=status, lines_added=added, lines_removed=removed)


def test_empty_file_list_gives_zero_metrics():
    metrics = analyze_files([])

    assert metrics == DiffMetrics()
    assert metrics.total_files == 0
    assert metrics.critical_paths == []


def test_every_file_counted_exactly_once():
    files = [
        _file("src/old_name.ts", status=FileStatus.RENAMED, added=0, removed=0),
        _file("package-lock.json", added=800, removed=300),
        _file("dist/app.min.js"),
        _file("README.md"),
        _file("docs/setup.rst"),
        _file("src/utils.test.ts"),
        _file("src/__tests__/button.tsx"),
        _file("src/core/engine.ts"),
        _file("src/app.ts"),
    ]

    metrics = analyze_files(files)

    assert metrics.rename_only_files == 1
    assert metrics.generated_files == 2
    assert metrics.doc_files == 2
    assert metrics.test_files == 2
    assert metrics.regular_code_files == 2
    assert metrics.critical_files == 1
    assert metrics.total_files == len(files)


def test_priority_rename_beats_everything():
    # Renamed critical file with no line changes is still just a rename
    metrics = analyze_files([_file("src/auth/login.ts", status=FileStatus.RENAMED, added=0, removed=0)])

    assert metrics.rename_only_files == 1
    assert metrics.critical_files == 0
    assert metrics.regular_code_files == 0


def test_renamed_with_edits_is_not_rename_only():
    metrics = analyze_files([_file("src/app.ts", status=FileStatus.RENAMED, added=3, removed=0)])

    assert metrics.rename_only_files == 0
    assert metrics.regular_code_files == 1


def test_generated_beats_doc_and_test():
    metrics = analyze_files([
        _file("build/README.md"),
        _file("dist/app.test.js"),
    ])

    assert metrics.generated_files == 2
    assert metrics.doc_files == 0
    assert metrics.test_files == 0


def test_doc_beats_test():
    metrics = analyze_files([_file("test/fixtures/notes.md")])

    assert metrics.doc_files == 1
    assert metrics.test_files == 0


def test_test_files_are_never_critical():
    metrics = analyze_files([_file("src/auth/session.spec.ts")])

    assert metrics.test_files == 1
    assert metrics.critical_files == 0
    assert metrics.critical_paths == []


def test_critical_is_subset_of_regular_with_deduplicated_keywords():
    metrics = analyze_files([
        _file("src/core/auth.ts"),
        _file("src/core/engine.ts"),
        _file("src/infra/database.ts"),
        _file("src/app.ts"),
    ])

    assert metrics.regular_code_files == 4
    assert metrics.critical_files == 3
    assert metrics.critical_paths == ["core", "infra"]


def test_classification_is_case_insensitive():
    metrics = analyze_files([
        _file("SRC/PAYMENTS/Charge.TS"),
        _file("CHANGELOG"),
        _file("Yarn.Lock"),
    ])

    assert metrics.critical_files == 1
    assert metrics.critical_paths == ["payments"]
    assert metrics.doc_files == 1
    assert metrics.generated_files == 1


def test_classifier_helpers():
    assert FileClassifier.is_generated("web/pnpm-lock.yaml")
    assert FileClassifier.is_doc("LICENSE")
    assert FileClassifier.is_test("api/__tests__/handler.js")
    assert FileClassifier.critical_keyword("lib/security/tokens.py") == "security"
    assert FileClassifier.critical_keyword("src/app.ts") is None
    assert not FileClassifier.is_critical("src/app.ts")


def test_docs_only_and_tests_only_flags():
    docs = analyze_files([_file("README.md"), _file("docs/guide.md")])
    tests = analyze_files([_file("src/app.test.ts"), _file("README.md")])
    mixed = analyze_files([_file("src/app.ts"), _file("src/app.test.ts")])

    assert docs.is_docs_only and not docs.is_tests_only
    assert tests.is_tests_only and not tests.is_docs_only
    assert not mixed.is_docs_only and not mixed.is_tests_only
