"""
Unit tests for the assessment page extractors.

Section rule: a period section starts at the first matching heading and ends
at the next heading of the same or a higher level.
"""

import unittest

from handbook_pages import assessment_page, dates_page
from unitracker.parse import extract_emails, parse_assessment_tables, parse_semester_emails


class TestParseAssessmentTables(unittest.TestCase):
    def test_single_table_with_header_row(self) -> None:
        html = (
            "<h3>Semester 1</h3>"
            "<table><tr><th>Assessment</th><th>Weight</th><th>Due</th></tr>"
            "<tr><td>Essay</td><td>30%</td><td>Week 5</td></tr></table>"
        )
        tables = parse_assessment_tables(html, "Semester 1")

        self.assertEqual(len(tables), 1)
        self.assertEqual(tables[0].columns, ["Assessment", "Weight", "Due"])
        self.assertEqual(tables[0].rows, [{"Assessment": "Essay", "Weight": "30%", "Due": "Week 5"}])

    def test_thead_and_tbody(self) -> None:
        tables = parse_assessment_tables(assessment_page(), "semester 1")

        self.assertEqual(len(tables), 1)
        self.assertEqual(tables[0].columns, ["Assessment", "Weight", "Due"])
        self.assertEqual([r["Assessment"] for r in tables[0].rows], ["Essay", "Exam"])

    def test_first_row_cells_used_as_header_fallback(self) -> None:
        html = (
            "<h4>Semester 1</h4>"
            "<table><tbody>"
            "<tr><td>Task</td><td>Weight</td></tr>"
            "<tr><td>Quiz</td><td>10%</td></tr>"
            "</tbody></table>"
        )
        (table,) = parse_assessment_tables(html, "Semester 1")
        self.assertEqual(table.columns, ["Task", "Weight"])
        self.assertEqual(table.rows, [{"Task": "Quiz", "Weight": "10%"}])

    def test_short_header_gets_positional_labels(self) -> None:
        html = (
            "<h3>Semester 1</h3>"
            "<table><thead><tr><th>Task</th></tr></thead>"
            "<tbody><tr><td>Quiz</td><td>10%</td><td>Week 3</td></tr></tbody></table>"
        )
        (table,) = parse_assessment_tables(html, "Semester 1")
        self.assertEqual(table.columns, ["Task", "Column 2", "Column 3"])
        self.assertEqual(table.rows, [{"Task": "Quiz", "Column 2": "10%", "Column 3": "Week 3"}])

    def test_tables_without_rows_are_dropped(self) -> None:
        html = (
            "<h3>Semester 1</h3>"
            "<table><thead><tr><th>Task</th></tr></thead><tbody></tbody></table>"
            "<table><tr><th>Only</th><th>Header</th></tr><tr><th>x</th></tr></table>"
        )
        self.assertEqual(parse_assessment_tables(html, "Semester 1"), [])

    def test_section_stops_at_next_heading(self) -> None:
        html = (
            "<h3>Semester 1</h3>"
            "<table><tr><th>Task</th></tr><tr><td>Essay</td></tr></table>"
            "<h3>Semester 2</h3>"
            "<table><tr><th>Task</th></tr><tr><td>Report</td></tr></table>"
        )
        tables = parse_assessment_tables(html, "Semester 1")
        self.assertEqual([t.rows for t in tables], [[{"Task": "Essay"}]])

        tables2 = parse_assessment_tables(html, "Semester 2")
        self.assertEqual([t.rows for t in tables2], [[{"Task": "Report"}]])

    def test_subheading_inside_section_is_walked_through(self) -> None:
        html = (
            "<h3>Semester 1</h3>"
            "<h4>Assessment details</h4>"
            "<table><tr><th>Task</th><th>Weight</th></tr><tr><td>Essay</td><td>30%</td></tr></table>"
            "<h3>Semester 2</h3>"
            "<table><tr><th>Task</th></tr><tr><td>Report</td></tr></table>"
        )
        (table,) = parse_assessment_tables(html, "Semester 1")
        self.assertEqual(table.rows, [{"Task": "Essay", "Weight": "30%"}])

    def test_only_first_matching_heading(self) -> None:
        html = (
            "<h4>Semester 1 (Parkville)</h4>"
            "<table><tr><th>Task</th></tr><tr><td>A</td></tr></table>"
            "<h4>Semester 1 (Online)</h4>"
            "<table><tr><th>Task</th></tr><tr><td>B</td></tr></table>"
        )
        tables = parse_assessment_tables(html, "Semester 1")
        self.assertEqual([t.rows for t in tables], [[{"Task": "A"}]])

    def test_no_matching_heading(self) -> None:
        self.assertEqual(parse_assessment_tables(assessment_page(period="Summer Term"), "Semester 1"), [])
        self.assertEqual(parse_assessment_tables("", "Semester 1"), [])


class TestEmails(unittest.TestCase):
    def test_case_is_preserved(self) -> None:
        emails = extract_emails("Contact: Jane.Doe@Example.EDU.AU for questions")
        self.assertEqual(emails, ["Jane.Doe@Example.EDU.AU"])

    def test_case_insensitive_dedup(self) -> None:
        emails = extract_emails("a.b@uni.edu, A.B@UNI.EDU; c+d@mail.uni-x.org.")
        self.assertEqual(emails, ["a.b@uni.edu", "c+d@mail.uni-x.org"])

    def test_no_emails(self) -> None:
        self.assertEqual(extract_emails("no at sign here"), [])
        self.assertEqual(extract_emails(None), [])

    def test_semester_emails_from_section(self) -> None:
        html = (
            "<h5>Semester 1</h5>"
            "<p>Coordinator: Jane.Doe@Example.EDU.AU</p>"
            "<p>Also jane.doe@example.edu.au and tutor@unimelb.edu.au</p>"
            "<h5>Semester 2</h5>"
            "<p>other@unimelb.edu.au</p>"
        )
        emails = parse_semester_emails(html, "Semester 1")
        self.assertEqual(emails, ["Jane.Doe@Example.EDU.AU", "tutor@unimelb.edu.au"])

    def test_semester_emails_need_h5_heading(self) -> None:
        html = "<h3>Semester 1</h3><p>coord@unimelb.edu.au</p>"
        self.assertEqual(parse_semester_emails(html, "Semester 1"), [])

    def test_dates_page(self) -> None:
        self.assertEqual(parse_semester_emails(dates_page(), "Semester 1"), ["dates@unimelb.edu.au"])


if __name__ == "__main__":
    unittest.main()
