"""Tests for JSON Schema validation of entity YAML files."""

from dbforge.metadata.validator import ValidationIssue, validate_path, validate_yaml_file


def write(tmp_path, name, text):
    path = tmp_path / name
    path.write_text(text)
    return path


class TestValidateYamlFile:
    def test_valid_file(self, user_yaml):
        assert validate_yaml_file(user_yaml) == []

    def test_unknown_field_type(self, tmp_path):
        path = write(tmp_path, "x.yaml", "entity: X\nfields:\n  - name: a\n    type: uuid\n")
        issues = validate_yaml_file(path)
        assert len(issues) == 1
        assert issues[0].path == "fields[0]/type"

    def test_unknown_property(self, tmp_path):
        path = write(tmp_path, "x.yaml", "entity: X\nfields:\n  - name: a\n    maxLength: 3\n")
        assert any("maxLength" in issue.message for issue in validate_yaml_file(path))

    def test_missing_fields(self, tmp_path):
        path = write(tmp_path, "x.yaml", "entity: X\n")
        assert any("'fields' is a required property" in i.message for i in validate_yaml_file(path))

    def test_empty_file(self, tmp_path):
        path = write(tmp_path, "x.yaml", "")
        assert "empty" in validate_yaml_file(path)[0].message

    def test_yaml_parse_error(self, tmp_path):
        path = write(tmp_path, "x.yaml", "entity: [unclosed\n")
        assert "YAML parse error" in validate_yaml_file(path)[0].message

    def test_duplicate_names(self, tmp_path):
        path = write(
            tmp_path, "x.yaml", "entity: X\nfields:\n  - name: a\n  - name: a\n"
        )
        assert [i.message for i in validate_yaml_file(path)] == ["Duplicate field name 'a'"]

    def test_two_primary_keys(self, tmp_path):
        path = write(
            tmp_path,
            "x.yaml",
            "entity: X\nfields:\n  - name: a\n    primaryKey: true\n  - name: b\n    primaryKey: true\n",
        )
        assert [i.message for i in validate_yaml_file(path)] == ["More than one primary key field"]

    def test_undefined_default_scope(self, tmp_path):
        path = write(
            tmp_path, "x.yaml", "entity: X\nfields:\n  - name: a\ndefaultScopes: [active]\n"
        )
        assert validate_yaml_file(path)[0].path == "defaultScopes"

    def test_default_populate_without_populate_is_warning(self, tmp_path):
        path = write(
            tmp_path, "x.yaml", "entity: X\nfields:\n  - name: a\ndefaultPopulates: [a]\n"
        )
        (issue,) = validate_yaml_file(path)
        assert issue.severity == "warning"
        assert issue.path == "defaultPopulates"


class TestValidatePath:
    def test_directory(self, user_yaml, tmp_path):
        write(tmp_path, "bad.yaml", "entity: lower\nfields:\n  - name: a\n")
        issues = validate_path(tmp_path)
        assert len(issues) == 1
        assert issues[0].file.name == "bad.yaml"

    def test_missing_path(self, tmp_path):
        issues = validate_path(tmp_path / "nope")
        assert "does not exist" in issues[0].message

    def test_strict_escalates_warnings(self, tmp_path):
        write(tmp_path, "x.yaml", "entity: X\nfields:\n  - name: a\ndefaultPopulates: [a]\n")
        assert validate_path(tmp_path)[0].severity == "warning"
        assert validate_path(tmp_path, strict=True)[0].severity == "error"

    def test_issue_str(self, tmp_path):
        issue = ValidationIssue(tmp_path / "a.yaml", "boom", "fields[0]")
        assert str(issue).startswith("[ERROR]")
        assert str(issue).endswith("at fields[0]: boom")
