from __future__ import annotations
import pandas as pd
from io import BytesIO
from typing import Any, Dict, Optional, Sequence

from .models import INCOMPLETE, StudentAggregate
from .scores import format_score

CSV_COLUMNS = ["First Name", "Last Name", "Email", "Average Score", "Last Activity Date", "Courses"]

# код диагностики -> текст для отчёта о качестве данных
REASON_MAP = {
    "row_skipped": "Строка пропущена: нет ни имени, ни email (или нет ни одного балла).",
    "unmatched_assessment_row": "Строка оценок не сопоставлена ни с одним студентом из списка курса.",
    "excluded_domain": "Email из исключённого домена - студент не учитывается.",
    "excluded_name": "Студент исключён по имени (правило excluded_names).",
    "no_scores": "У студента нет ни одного балла - в результат не попал.",
    "incomplete_course": "Для курса нет списка студентов или выгрузки оценок.",
    "file_error": "Файл не удалось разобрать.",
}


def eligible_to_csv(eligible: Sequence[StudentAggregate]) -> str:
    """CSV допущенных студентов: балл с одним знаком, курсы через "; "."""
    rows = []
    for s in eligible:
        rows.append({
            "First Name": s.first_name,
            "Last Name": s.last_name,
            "Email": s.email,
            "Average Score": f"{s.average_score:.1f}",
            "Last Activity Date": s.last_activity_date.isoformat(),
            "Courses": "; ".join(s.all_courses or (s.course_id,)),
        })
    df = pd.DataFrame(rows, columns=CSV_COLUMNS)
    return df.to_csv(index=False, lineterminator="\n")
# =========================

# Таблицы для интерфейса и Excel
# =========================
def eligible_frame(eligible: Sequence[StudentAggregate]) -> pd.DataFrame:
    rows = [{
        "Имя": s.first_name,
        "Фамилия": s.last_name,
        "Email": s.email,
        "Средний балл": round(s.average_score, 2),
        "Последняя активность": s.last_activity_date.isoformat(),
        "Курсы": ", ".join(s.all_courses),
    } for s in eligible]
    df = pd.DataFrame(rows, columns=["Имя", "Фамилия", "Email", "Средний балл", "Последняя активность", "Курсы"])
    if not df.empty:
        df = df.sort_values("Средний балл", ascending=False).reset_index(drop=True)
    return df


def students_frame(aggregates: Sequence[StudentAggregate], eligible: Sequence[StudentAggregate] = ()) -> pd.DataFrame:
    ok = {s.key for s in eligible}
    rows = [{
        "Курс": a.course_id,
        "Имя": a.first_name,
        "Фамилия": a.last_name,
        "Email": a.email,
        "Дата записи": a.enrollment_date.isoformat(),
        "Последняя активность": a.last_activity_date.isoformat(),
        "Средний балл": round(a.average_score, 2),
        "Тестов": len(a.quiz_scores),
        "Не завершено": a.incomplete_count,
        "Курс завершён": "да" if a.completed else "нет",
        "Допущен": "да" if a.key in ok else "нет",
    } for a in aggregates]
    cols = ["Курс", "Имя", "Фамилия", "Email", "Дата записи", "Последняя активность",
            "Средний балл", "Тестов", "Не завершено", "Курс завершён", "Допущен"]
    return pd.DataFrame(rows, columns=cols)


def quiz_detail_frame(aggregates: Sequence[StudentAggregate]) -> pd.DataFrame:
    rows = []
    for a in aggregates:
        for q in a.quiz_scores:
            rows.append({
                "Курс": a.course_id,
                "ФИО": a.full_name,
                "Email": a.email,
                "Тест": q.quiz_name,
                "Балл": None if q.score is INCOMPLETE else round(float(q.score), 2),
                "Значение": format_score(q.score),
            })
    return pd.DataFrame(rows, columns=["Курс", "ФИО", "Email", "Тест", "Балл", "Значение"])


def quality_frame(diagnostics: Sequence[Dict[str, Any]]) -> pd.DataFrame:
    rows = [{
        "Уровень": d.get("level", "info"),
        "Код": d.get("reason", ""),
        "Сообщение": REASON_MAP.get(d.get("reason", ""), ""),
        "Курс": d.get("course_id", ""),
        "Студент": d.get("student", ""),
        "Детали": d.get("detail", ""),
        "Источник": d.get("source", ""),
        "Строка (CSV)": "" if d.get("row") is None else d.get("row"),
    } for d in diagnostics]
    cols = ["Уровень", "Код", "Сообщение", "Курс", "Студент", "Детали", "Источник", "Строка (CSV)"]
    df = pd.DataFrame(rows, columns=cols)
    if not df.empty:
        sev = {"error": 0, "warn": 1, "info": 2}
        df["__sev"] = df["Уровень"].map(sev).fillna(9)
        df = df.sort_values(["__sev", "Курс"], kind="stable").drop(columns=["__sev"]).reset_index(drop=True)
    return df


def build_report_frames(
    aggregates: Sequence[StudentAggregate],
    eligible: Sequence[StudentAggregate],
    diagnostics: Sequence[Dict[str, Any]] = (),
) -> Dict[str, pd.DataFrame]:
    return {
        "eligible": eligible_frame(eligible),
        "students": students_frame(aggregates, eligible),
        "detail": quiz_detail_frame(aggregates),
        "quality": quality_frame(diagnostics),
    }
# =========================

# Excel
# =========================
def export_to_excel_bytes(
    aggregates: Sequence[StudentAggregate],
    eligible: Sequence[StudentAggregate],
    diagnostics: Sequence[Dict[str, Any]] = (),
    *,
    stats: Optional[Dict[str, Any]] = None,
) -> bytes:
    frames = build_report_frames(aggregates, eligible, diagnostics)
    eligible_df = frames["eligible"]
    students_df = frames["students"]
    quality_df = frames["quality"]

    bio = BytesIO()

    with pd.ExcelWriter(bio, engine="xlsxwriter") as writer:
        eligible_df.to_excel(writer, index=False, sheet_name="Допущенные")
        students_df.to_excel(writer, index=False, sheet_name="Все студенты")

        if stats:
            stats_df = pd.DataFrame([
                {"Показатель": "Студентов", "Значение": stats.get("total_students", 0)},
                {"Показатель": "Допущено", "Значение": stats.get("eligible_students", 0)},
                {"Показатель": "Средний балл", "Значение": round(float(stats.get("average_score", 0.0)), 2)},
                {"Показатель": "Доля допущенных, %", "Значение": round(float(stats.get("pass_rate", 0.0)), 2)},
            ] + [
                {"Показатель": f"Средний балл: {p}", "Значение": round(float(v), 2)}
                for p, v in (stats.get("course_averages") or {}).items()
            ])
            stats_df.to_excel(writer, index=False, sheet_name="Сводка")

        if not quality_df.empty:
            quality_df.to_excel(writer, index=False, sheet_name="Качество данных")

        wb = writer.book

        fmt_header = wb.add_format({"bold": True, "bg_color": "#F2F2F2", "border": 1, "valign": "vcenter"})
        fmt_text = wb.add_format({"border": 1, "valign": "top"})
        fmt_num = wb.add_format({"border": 1, "valign": "top", "num_format": "0.00"})
        fmt_title = wb.add_format({"bold": True, "bg_color": "#E8F0FE", "border": 1, "valign": "vcenter"})
        fmt_small = wb.add_format({"border": 1, "valign": "top", "font_color": "#555555"})
        fmt_lvl_err = wb.add_format({"border": 1, "valign": "top", "bg_color": "#FCE8E6"})
        fmt_lvl_warn = wb.add_format({"border": 1, "valign": "top", "bg_color": "#FEF7E0"})
        fmt_lvl_info = wb.add_format({"border": 1, "valign": "top", "bg_color": "#E8F0FE"})

        def format_df_sheet(sheet_name: str, df: pd.DataFrame, default_width: int = 22, max_width: int = 60):
            ws = writer.sheets.get(sheet_name)
            if ws is None:
                return
            ws.freeze_panes(1, 0)
            ws.autofilter(0, 0, max(1, len(df)), max(0, len(df.columns) - 1))
            for col, name in enumerate(df.columns):
                ws.write(0, col, name, fmt_header)
                w = max(10, min(max_width, int(len(str(name)) * 1.2) + 10))
                ws.set_column(col, col, max(default_width, w))

        format_df_sheet("Допущенные", eligible_df, default_width=18, max_width=40)
        format_df_sheet("Все студенты", students_df, default_width=16, max_width=36)
        if stats:
            format_df_sheet("Сводка", stats_df, default_width=24, max_width=40)

        # тесты по студентам: строка-заголовок на студента, тесты свёрнуты под ней
        ws3 = wb.add_worksheet("Тесты")
        writer.sheets["Тесты"] = ws3

        cols = ["Курс", "ФИО", "Email", "Тест", "Балл", "Значение"]
        for c, n in enumerate(cols):
            ws3.write(0, c, n, fmt_header)

        ws3.freeze_panes(1, 0)
        ws3.set_column(0, 0, 16)
        ws3.set_column(1, 1, 28)
        ws3.set_column(2, 2, 30)
        ws3.set_column(3, 3, 40)
        ws3.set_column(4, 4, 12)
        ws3.set_column(5, 5, 16)

        r = 1
        for a in aggregates:
            if not a.quiz_scores:
                continue
            title = f"{a.course_id} | {a.full_name} | {a.email} | Средний: {a.average_score:.2f}%"
            ws3.merge_range(r, 0, r, len(cols) - 1, title, fmt_title)
            ws3.set_row(r, None, None, {"level": 0, "collapsed": True})
            r += 1

            for q in a.quiz_scores:
                ws3.write(r, 0, "", fmt_text)
                ws3.write(r, 1, "", fmt_text)
                ws3.write(r, 2, "", fmt_text)
                ws3.write(r, 3, q.quiz_name, fmt_text)
                if q.score is INCOMPLETE:
                    ws3.write(r, 4, "", fmt_text)
                else:
                    ws3.write_number(r, 4, float(q.score), fmt_num)
                ws3.write(r, 5, format_score(q.score), fmt_small)

                ws3.set_row(r, None, None, {"level": 1, "hidden": True})
                r += 1

        ws3.autofilter(0, 0, max(1, r - 1), len(cols) - 1)

        if not quality_df.empty:
            format_df_sheet("Качество данных", quality_df, default_width=16, max_width=60)
            wsq = writer.sheets.get("Качество данных")
            if wsq is not None:
                cols_q = list(quality_df.columns)

                for nm, w in [
                    ("Уровень", 10),
                    ("Код", 26),
                    ("Сообщение", 60),
                    ("Студент", 28),
                    ("Детали", 35),
                    ("Источник", 30),
                ]:
                    if nm in cols_q:
                        j = cols_q.index(nm)
                        wsq.set_column(j, j, w)

                jlvl = cols_q.index("Уровень")
                last_row = len(quality_df)
                for value, fmt in (("error", fmt_lvl_err), ("warn", fmt_lvl_warn), ("info", fmt_lvl_info)):
                    wsq.conditional_format(1, jlvl, last_row, jlvl, {
                        "type": "text",
                        "criteria": "containing",
                        "value": value,
                        "format": fmt,
                    })

    return bio.getvalue()
