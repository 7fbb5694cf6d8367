from io import BytesIO
from typing import Dict, List, Sequence, Tuple

import pandas as pd

from assessment_api.aggregation import UNCATEGORIZED, categorize
from assessment_api.models import Test, TestResult

SHEET_NAME = "Results"


def _question_label(question) -> str:
    text = (question.text or "").strip()
    if len(text) > 40:
        text = text[:37] + "..."
    return f"Q{question.order}. {text}" if text else f"Q{question.order}"


def build_results_workbook(
    test: Test, results: Sequence[TestResult], categories, group_names: Dict[str, str] = None
) -> Tuple[BytesIO, str]:
    """
    Export results of one test to an Excel file, highest score first.
    Returns a tuple of (BytesIO containing the file, filename).
    """
    group_names = group_names or {}
    questions = sorted(test.questions, key=lambda q: q.order)
    labels = [_question_label(question) for question in questions]

    data: List[Dict] = []
    ordered = sorted(results, key=lambda r: (-r.total_score, r.student.full_name))
    for count, result in enumerate(ordered, start=1):
        category = categorize(result.total_score, categories)
        row = {
            "№": count,
            "Student": result.student.full_name,
            "Group": group_names.get(result.student.group_id, ""),
            "Total score": result.total_score,
            "Category": category.name if category else UNCATEGORIZED,
            "Completed at": result.completed_at.strftime("%Y-%m-%d %H:%M"),
        }
        scores = {response.question_id: response.score for response in result.responses}
        for question, label in zip(questions, labels):
            row[label] = scores.get(question.id, 0)
        data.append(row)

    columns = ["№", "Student", "Group", "Total score", "Category", "Completed at"] + labels
    df = pd.DataFrame(data, columns=columns)

    output = BytesIO()
    with pd.ExcelWriter(output, engine="xlsxwriter") as writer:
        df.to_excel(writer, index=False, sheet_name=SHEET_NAME)

        worksheet = writer.sheets[SHEET_NAME]
        for i, col in enumerate(df.columns):
            longest = df[col].astype(str).map(len).max() if not df.empty else 0
            worksheet.set_column(i, i, max(longest, len(col)) + 2)

    output.seek(0)
    filename = f"test_{test.id}_results.xlsx"
    return output, filename
