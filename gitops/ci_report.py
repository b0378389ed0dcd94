"""
Render SQL review advice in each CI system's native report format.

GitLab reads a JUnit XML test report, GitHub reads workflow commands printed
to the job log. Files are sorted so the output is deterministic.
"""

from xml.sax.saxutils import escape

from advisor.advice import Advice, AdviceStatus, worst_status
from models.vcs_models import VCSSQLReviewResult, VCSType


def _xml(value: str) -> str:
    return escape(value, {"\"": "&quot;"})


def convert_advice_to_gitlab_ci_result(advice_map: dict[str, list[Advice]], docs_url: str) -> VCSSQLReviewResult:
    """
    Build a JUnit XML report: one testsuite per file with findings, one
    failing testcase per finding.

    Args:
        advice_map: Advice per file path
        docs_url: Base URL of the error code docs

    Returns:
        Result whose content is the single XML document
    """
    testsuites = []
    statuses = []

    for file_path in sorted(advice_map):
        testcases = []
        for advice in advice_map[file_path]:
            if advice.code == 0:
                continue
            statuses.append(advice.status)

            content = f"Error: {advice.content}.\nYou can check the docs at {docs_url}#{advice.code}"
            testcases.append(
                f"<testcase name=\"{_xml(advice.title)}\" classname=\"{_xml(file_path)}\" "
                f"file=\"{_xml(file_path)}#L{advice.report_line}\">\n"
                f"<failure>\n{_xml(content)}\n</failure>\n"
                f"</testcase>"
            )

        if testcases:
            testsuites.append(f"<testsuite name=\"{_xml(file_path)}\">\n" + "\n".join(testcases) + "\n</testsuite>")

    report = (
        "<?xml version=\"1.0\" encoding=\"UTF-8\"?>\n"
        "<testsuites name=\"SQL Review\">\n" + "\n".join(testsuites) + "\n</testsuites>"
    )
    return VCSSQLReviewResult(status=worst_status(statuses), content=[report])


def convert_advice_to_github_action_result(advice_map: dict[str, list[Advice]], docs_url: str) -> VCSSQLReviewResult:
    """
    Build GitHub workflow commands, one annotation per warning or error.

    Newlines inside a message are encoded as %0A so each command stays on one
    log line.
    """
    messages = []
    statuses = []

    for file_path in sorted(advice_map):
        for advice in advice_map[file_path]:
            if advice.code == 0 or advice.status == AdviceStatus.SUCCESS:
                continue
            statuses.append(advice.status)

            prefix = "error" if advice.status == AdviceStatus.ERROR else "warning"
            message = (
                f"::{prefix} file={file_path},line={advice.report_line},col=1,endColumn=2,"
                f"title={advice.title} ({advice.code})::{advice.content}\nDoc: {docs_url}#{advice.code}"
            )
            messages.append(message.replace("\n", "%0A"))

    return VCSSQLReviewResult(status=worst_status(statuses), content=messages)


def format_sql_review_result(
    vcs_type: VCSType,
    advice_map: dict[str, list[Advice]],
    docs_url: str,
) -> VCSSQLReviewResult:
    if vcs_type == VCSType.GITHUB_COM:
        return convert_advice_to_github_action_result(advice_map, docs_url)
    if vcs_type == VCSType.GITLAB_SELF_HOST:
        return convert_advice_to_gitlab_ci_result(advice_map, docs_url)
    raise ValueError(f"Unsupported VCS type: {vcs_type}")
