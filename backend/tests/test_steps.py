from buildify.steps import StepStatus, StepType, normalize_path, parse_steps


def test_single_file_tag():
    steps = parse_steps('<file path="src/index.js">console.log(1)</file>')
    assert len(steps) == 1
    step = steps[0]
    assert step.type == StepType.CREATE_FILE
    assert step.path == "src/index.js"
    assert step.code == "console.log(1)"
    assert step.title == "Create src/index.js"
    assert step.status == StepStatus.PENDING
    assert step.id == 1


def test_prose_outside_tags_is_ignored():
    text = 'Sure! Here is the file:\n<file path="a.txt">x</file>\nHope that helps.'
    steps = parse_steps(text)
    assert [s.path for s in steps] == ["a.txt"]


def test_document_order_is_preserved():
    text = "".join(f'<file path="f{i}.txt">{i}</file> and ' for i in range(5))
    steps = parse_steps(text)
    assert [s.path for s in steps] == [f"f{i}.txt" for i in range(5)]
    assert [s.id for s in steps] == [1, 2, 3, 4, 5]


def test_parsing_is_deterministic():
    text = '<file path="a.js">1</file><shell>npm i</shell><folder path="pub"/>'
    assert parse_steps(text) == parse_steps(text)


def test_layout_newlines_trimmed_but_inner_blank_lines_kept():
    text = '<file path="a.py">\n\nimport os\n\nprint(os)\n\n  </file>'
    (step,) = parse_steps(text)
    assert step.code == "\nimport os\n\nprint(os)\n"


def test_missing_path_is_skipped_without_aborting():
    text = '<file>orphan</file><file path="ok.txt">fine</file>'
    steps = parse_steps(text)
    assert [s.path for s in steps] == ["ok.txt"]
    assert steps[0].id == 1


def test_unterminated_tag_is_skipped():
    text = '<file path="broken.txt">never closed\n<file path="good.txt">yes</file>'
    steps = parse_steps(text)
    assert [s.path for s in steps] == ["good.txt"]
    assert steps[0].code == "yes"


def test_trailing_unterminated_tag_yields_nothing_more():
    text = '<file path="a.txt">a</file><file path="b.txt">b'
    assert [s.path for s in parse_steps(text)] == ["a.txt"]


def test_nested_tag_drops_outer_keeps_inner():
    text = '<file path="outer.txt">before <file path="inner.txt">in</file> after</file>'
    steps = parse_steps(text)
    assert [s.path for s in steps] == ["inner.txt"]


def test_bolt_actions_inside_artifact():
    text = (
        '<boltArtifact id="project-import" title="Todo App">\n'
        '<boltAction type="file" filePath="index.html"><h1>Hi</h1></boltAction>\n'
        '<boltAction type="shell">npm install</boltAction>\n'
        "</boltArtifact>\n"
        '<file path="after.txt">x</file>'
    )
    steps = parse_steps(text)
    assert [s.type for s in steps] == [StepType.CREATE_FILE, StepType.RUN_SCRIPT, StepType.CREATE_FILE]
    assert steps[0].path == "index.html"
    assert steps[0].description == "Todo App"
    assert steps[1].code == "npm install"
    assert steps[1].title == "Run command"
    assert steps[1].path is None
    assert steps[2].description == ""


def test_unknown_bolt_action_type_is_dropped():
    text = '<boltAction type="deploy">now</boltAction><file path="a.txt">a</file>'
    assert [s.path for s in parse_steps(text)] == ["a.txt"]


def test_folder_tags():
    steps = parse_steps('<folder path="public/img"/><folder path="assets"></folder>')
    assert [(s.type, s.path) for s in steps] == [
        (StepType.CREATE_FOLDER, "public/img"),
        (StepType.CREATE_FOLDER, "assets"),
    ]
    assert steps[0].title == "Create folder public/img"


def test_empty_shell_is_dropped():
    assert parse_steps("<shell>   </shell>") == []


def test_self_closing_file_is_malformed():
    assert parse_steps('<file path="a.txt"/>') == []


def test_single_quoted_attributes():
    (step,) = parse_steps("<file path='src/a.js'>a</file>")
    assert step.path == "src/a.js"


def test_parent_segments_are_rejected():
    text = '<file path="../etc/passwd">x</file><file path="./src//b.js">b</file>'
    assert [s.path for s in parse_steps(text)] == ["src/b.js"]


def test_normalize_path():
    assert normalize_path("/src/./a.js") == "src/a.js"
    assert normalize_path("src/") == "src"
    assert normalize_path("a\\b.txt") == "a/b.txt"
    assert normalize_path("") is None
    assert normalize_path("a/../b") is None
    assert normalize_path(None) is None


def test_empty_input():
    assert parse_steps("") == []
    assert parse_steps("just some prose") == []


def test_hyphenated_lookalike_tags_are_plain_text():
    body = '<file-upload accept="image/*"></file-upload>\n<shell-prompt>$</shell-prompt>'
    text = f'<file path="src/Upload.vue">{body}</file>\n<shell-prompt>npm test</shell-prompt>'
    steps = parse_steps(text)
    assert len(steps) == 1
    assert steps[0].path == "src/Upload.vue"
    assert steps[0].code == body
