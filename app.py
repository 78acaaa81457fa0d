from __future__ import annotations
import logging
from datetime import date

import pandas as pd
import streamlit as st

from certify.export import build_report_frames, eligible_to_csv, export_to_excel_bytes
from certify.grouping import SeriesPolicy
from certify.models import Settings
from certify.pipeline import run_batch
from certify.scoring import DenyList, evaluate
from certify.storage import clear_stored_data, load_settings, load_students, save_settings, save_students
from certify.utils import load_rules

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

RULES = load_rules()
POLICY = SeriesPolicy.from_rules(RULES)
DENY = DenyList.from_rules(RULES)

st.set_page_config(page_title="Допуск к сертификату", layout="wide")
st.title("Сведение выгрузок курсов и допуск к сертификату")
# =========================

# Состояние
# =========================
for k in ("aggregates", "diagnostics", "file_errors", "files"):
    st.session_state.setdefault(k, None)

if "settings" not in st.session_state:
    st.session_state["settings"] = load_settings()

if st.session_state["aggregates"] is None:
    stored = load_students()
    if stored:
        st.session_state["aggregates"] = stored
        st.session_state["diagnostics"] = []
        st.session_state["file_errors"] = []
        st.info(f"Загружены сохранённые результаты: {len(stored)} записей.")
# =========================

# Uploads
# =========================
uploads = st.file_uploader(
    "Загрузите выгрузки курсов (список студентов и оценки за тесты, CSV/TXT)",
    type=["csv", "txt", "tsv"],
    accept_multiple_files=True,
)
st.caption("Имя файла задаёт курс: aifi_301_students.csv и aifi_301_quiz_scores.csv - один курс aifi_301.")

if uploads and st.button("Обработать файлы", type="primary"):
    result = run_batch(uploads, today=date.today(), rules=RULES)
    st.session_state["aggregates"] = result.aggregates
    st.session_state["diagnostics"] = result.diagnostics
    st.session_state["file_errors"] = result.file_errors
    st.session_state["files"] = result.files

    st.success(
        f"Обработано файлов: {len(uploads) - len(result.file_errors)}, "
        f"курсов: {len(result.files)} (полных: {len(result.complete_courses)}), "
        f"студентов: {len(result.aggregates)}"
    )
    if result.excluded_count or result.unmatched_count:
        st.warning(f"Исключено: {result.excluded_count}, не сопоставлено строк оценок: {result.unmatched_count}")

if st.session_state.get("file_errors"):
    st.error("Часть файлов пропущена из-за ошибок (остальные обработаны):")
    st.dataframe(pd.DataFrame(st.session_state["file_errors"]), width="stretch")

files = st.session_state.get("files")
if files:
    with st.expander("Курсы и файлы", expanded=False):
        rows = [{
            "Курс": cid,
            "Список студентов": cf.enrollment.filename if cf.enrollment else "",
            "Оценки": cf.assessment.filename if cf.assessment else "",
            "Полный": "да" if cf.is_complete else "нет",
        } for cid, cf in files.items()]
        st.dataframe(pd.DataFrame(rows), width="stretch", hide_index=True)
# =========================

# Параметры допуска
# =========================
st.subheader("Параметры допуска")
cur: Settings = st.session_state["settings"]
c1, c2, c3 = st.columns(3)
with c1:
    threshold = st.number_input("Проходной балл, %", min_value=0.0, max_value=100.0,
                                value=float(cur.pass_threshold), step=1.0)
with c2:
    use_date = st.checkbox("Учитывать только активность с даты", value=cur.date_since is not None)
with c3:
    since = st.date_input("Дата", value=cur.date_since or date.today(), disabled=not use_date)

settings = Settings.create(threshold, since if use_date else None)
if settings != cur:
    st.session_state["settings"] = settings
    save_settings(settings)

aggregates = st.session_state.get("aggregates")
if not aggregates:
    st.warning("Загрузите и обработайте выгрузки курсов.")
    st.stop()
# =========================

# Результат
# =========================
eligible, stats = evaluate(aggregates, settings, policy=POLICY, deny_list=DENY)
diagnostics = st.session_state.get("diagnostics") or []
frames = build_report_frames(aggregates, eligible, diagnostics)

st.divider()
m1, m2, m3, m4 = st.columns(4)
with m1:
    st.metric("Студентов", stats["total_students"])
with m2:
    st.metric("Допущено", stats["eligible_students"])
with m3:
    st.metric("Средний балл", f"{stats['average_score']:.1f}%")
with m4:
    st.metric("Доля допущенных", f"{stats['pass_rate']:.1f}%")

if stats["course_averages"]:
    st.caption("Средний балл по курсам: " + ", ".join(
        f"{p}: {v:.1f}%" for p, v in stats["course_averages"].items()
    ))

quality_df = frames["quality"]
with st.expander("Проверка качества данных", expanded=False):
    if not quality_df.empty:
        cc1, cc2 = st.columns(2)
        with cc1:
            st.metric("Проблем/замечаний", len(quality_df))
        with cc2:
            st.metric("Ошибок (error)", int((quality_df["Уровень"] == "error").sum()))
        sev_order = ["error", "warn", "info"]
        sev = st.multiselect("Фильтр по уровню", sev_order, default=sev_order)
        view_q = quality_df[quality_df["Уровень"].astype(str).isin(sev)]
        st.dataframe(view_q.head(1000), width="stretch")
    else:
        st.success("Проблемы не обнаружены.")

st.subheader("Допущенные к сертификату")
q = st.text_input("Поиск по имени или email", value="")

view = frames["eligible"]
if q.strip():
    mask = (
        (view["Имя"].astype(str) + " " + view["Фамилия"].astype(str)).str.contains(q.strip(), case=False, na=False)
        | view["Email"].astype(str).str.contains(q.strip(), case=False, na=False)
    )
    view = view[mask]
st.dataframe(view.head(500), width="stretch")

st.subheader("Все студенты")
sv = frames["students"]
courses = ["(все)"] + sorted(sv["Курс"].astype(str).unique().tolist())
csel = st.selectbox("Фильтр по курсу", courses, index=0)
if csel != "(все)":
    sv = sv[sv["Курс"].astype(str) == csel]
if q.strip():
    sv = sv[sv["Email"].astype(str).str.contains(q.strip(), case=False, na=False)
            | (sv["Имя"].astype(str) + " " + sv["Фамилия"].astype(str)).str.contains(q.strip(), case=False, na=False)]
st.dataframe(sv.head(500), width="stretch")

with st.expander("Баллы по тестам (фрагмент)", expanded=False):
    st.dataframe(frames["detail"].head(800), width="stretch")
# =========================

# Выгрузка и хранение
# =========================
d1, d2 = st.columns(2)
with d1:
    st.download_button(
        "Скачать CSV допущенных",
        data=eligible_to_csv(eligible).encode("utf-8"),
        file_name="eligible_students.csv",
        mime="text/csv",
    )
with d2:
    xbytes = export_to_excel_bytes(aggregates, eligible, diagnostics, stats=stats)
    st.download_button(
        "Скачать Excel-отчёт",
        data=xbytes,
        file_name="Допуск_к_сертификату.xlsx",
        mime="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    )

s1, s2 = st.columns(2)
with s1:
    if st.button("Сохранить результаты"):
        save_students(aggregates)
        save_settings(settings)
        st.success("Сохранено.")
with s2:
    if st.button("Очистить сохранённые данные"):
        clear_stored_data()
        for k in ("aggregates", "diagnostics", "file_errors", "files"):
            st.session_state[k] = None
        st.session_state["settings"] = Settings()
        st.success("Удалено.")
        st.rerun()
