"""ExamGuard: proctored school exams (Take Exam, Class Results)."""
import json
import os
import sys
from pathlib import Path

# Ensure project root is in path
project_root = Path(__file__).resolve().parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import streamlit as st
import streamlit.components.v1 as components

from engine import CLASS_TAGS, DEVTOOLS_GAP_PX, EXAM_DURATION_MINUTES, MAX_VIOLATIONS, SUBJECTS, WARNING_SECONDS
from exam_engine.clock import format_time
from exam_engine.controller import SessionController
from exam_engine.detectors import describe_reason
from exam_engine.errors import AlreadySubmittedError, ExamError, PersistenceError, SessionClosedError
from exam_engine.memory import (
    DEMO_QUESTIONS,
    InMemoryQuestionPool,
    InMemoryResultSink,
    InMemorySnapshotStore,
    InMemoryStudentRecord,
)
from exam_engine.models import SessionState, SubmissionCause
from exam_engine.scoring import summarize_results

DEMO_MODE = not (os.getenv("SUPABASE_URL") and os.getenv("SUPABASE_KEY"))
PAGES = ["Take Exam", "Class Results"]
OPTION_LABELS = "ABCDEFGHIJ"

CAUSE_MESSAGES = {
    SubmissionCause.MANUAL: "Exam submitted.",
    SubmissionCause.TIMEOUT: "Time is up. Your exam was submitted automatically.",
    SubmissionCause.VIOLATION_THRESHOLD: "Your exam was submitted automatically after repeated violations.",
}

# Relays browser events to the server through the ?evt= query parameter.
# Events that cannot be delivered right away (beforeunload) wait in
# sessionStorage until the next page load.
BRIDGE_JS = """
<script>
(function () {
  const host = window.parent;
  const QUEUE = "examguard-pending";
  const GAP = __GAP__;
  host.__examguardOff = __OFF__;
  const read = () => JSON.parse(host.sessionStorage.getItem(QUEUE) || "[]");
  const write = (q) => host.sessionStorage.setItem(QUEUE, JSON.stringify(q));
  function flush() {
    const q = read();
    if (!q.length || host.__examguardFlushing || host.__examguardOff) return;
    host.__examguardFlushing = true;
    write([]);
    const params = new URLSearchParams(host.location.search);
    params.set("evt", JSON.stringify(q));
    host.location.search = params.toString();
  }
  function push(evt, deliver) {
    if (host.__examguardOff || host.__examguardFlushing) return;
    const q = read(); q.push(evt); write(q);
    if (deliver !== false) setTimeout(flush, 150);
  }
  const doc = host.document;
  doc.body.style.userSelect = doc.body.style.webkitUserSelect = host.__examguardOff ? "auto" : "none";
  if (host.__examguardBound) { flush(); return; }
  host.__examguardBound = true;
  const block = (e) => { if (!host.__examguardOff) e.preventDefault(); };
  doc.addEventListener("selectstart", block);
  doc.addEventListener("dragstart", block);
  doc.addEventListener("contextmenu", (e) => { if (host.__examguardOff) return; e.preventDefault(); push({type: "contextmenu"}); });
  doc.addEventListener("keydown", (e) => {
    if (host.__examguardOff) return;
    if (!(e.ctrlKey || e.metaKey || e.altKey || e.key === "F12" || e.key === "F5")) return;
    e.preventDefault();
    push({type: "keydown", key: e.key, ctrlKey: e.ctrlKey, metaKey: e.metaKey, shiftKey: e.shiftKey, altKey: e.altKey});
  });
  doc.addEventListener("visibilitychange", () => push({type: "visibilitychange", hidden: doc.hidden}));
  host.addEventListener("blur", () => push({type: "blur"}));
  host.addEventListener("focus", () => push({type: "focus"}, false));
  host.addEventListener("beforeunload", () => push({type: "beforeunload"}, false));
  host.history.pushState(null, "", host.location.href);
  host.addEventListener("popstate", () => { host.history.pushState(null, "", host.location.href); push({type: "popstate"}); });
  let reported = false;
  setInterval(() => {
    if (reported || host.__examguardOff) return;
    const w = host.outerWidth - host.innerWidth, h = host.outerHeight - host.innerHeight;
    if (w > GAP || h > GAP) {
      reported = true;
      push({type: "viewport", outerWidth: host.outerWidth, innerWidth: host.innerWidth, outerHeight: host.outerHeight, innerHeight: host.innerHeight});
    }
  }, 500);
  // an open console reads the id of logged elements
  const bait = new Image();
  Object.defineProperty(bait, "id", {get: () => {
    if (!reported && !host.__examguardOff) { reported = true; push({type: "devtools-console"}); }
    return "";
  }});
  setInterval(() => { if (!reported && !host.__examguardOff) host.console.log(bait); }, 1000);
  flush();
})();
</script>
"""


# ----- Backends -----

@st.cache_resource
def get_controllers() -> dict:
    """Live controllers by student id; survive page reloads within this server process."""
    return {}


@st.cache_resource
def get_demo_backend():
    return {
        "pool": InMemoryQuestionPool(DEMO_QUESTIONS),
        "students": InMemoryStudentRecord(),
        "results": InMemoryResultSink(),
        "snapshots": InMemorySnapshotStore(),
    }


def build_controller() -> SessionController:
    if DEMO_MODE:
        backend = get_demo_backend()
        return SessionController(backend["pool"], backend["students"], backend["results"], backend["snapshots"])
    from db import get_database

    database = get_database()
    return SessionController(database, database, database, database)


def lookup_student(full_name: str, class_tag: str):
    if DEMO_MODE:
        return {"id": f"demo-{class_tag}-{full_name.strip().lower().replace(' ', '-')}", "full_name": full_name}
    from db import get_database

    return get_database().get_student(full_name.strip(), class_tag)


def open_exam(student_id: str, class_tag: str, subject: str) -> SessionController:
    """Reuse the live controller, else resume from a snapshot, else start fresh."""
    controllers = get_controllers()
    controller = controllers.get(student_id)
    if controller is not None and controller.state is not None:
        return controller
    controller = build_controller()
    if controller.resume(student_id, auto_tick=True) is None:
        controller.start(student_id, class_tag, subject, auto_tick=True)
    controllers[student_id] = controller
    return controller


def relay_events(controller: SessionController):
    raw = st.query_params.get("evt")
    if not raw:
        return
    del st.query_params["evt"]
    try:
        payloads = json.loads(raw)
    except ValueError:
        return
    if isinstance(payloads, list):
        controller.observe_many(payloads)


def record_answer(controller: SessionController, question_id: str, key: str):
    try:
        controller.record_answer(question_id, st.session_state[key])
    except SessionClosedError as e:
        st.session_state["flash"] = str(e)
    except ExamError as e:
        st.session_state["flash"] = f"Answer not saved: {e}"


st.set_page_config(page_title="ExamGuard", layout="wide")
st.sidebar.title("ExamGuard")
if DEMO_MODE:
    st.sidebar.caption("Demo mode (SUPABASE_URL / SUPABASE_KEY not set)")
default_page = st.query_params.get("page", PAGES[0])
if default_page not in PAGES:
    default_page = PAGES[0]
page = st.sidebar.radio("Navigate", PAGES, index=PAGES.index(default_page), label_visibility="collapsed")


def render_result(controller: SessionController):
    components.html(BRIDGE_JS.replace("__GAP__", str(DEVTOOLS_GAP_PX)).replace("__OFF__", "true"), height=0)
    flash = st.session_state.pop("flash", None)
    if flash:
        st.error(flash)
    result = controller.result
    st.success(CAUSE_MESSAGES[result.submission_cause])
    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric("Score", f"{result.score} / {result.total_questions}")
    with col2:
        st.metric("Percentage", f"{result.percentage}%")
    with col3:
        st.metric("Grade", result.grade)
    with col4:
        st.metric("Time taken", format_time(result.time_taken_seconds))
    if result.flagged:
        st.warning("Flagged: " + ", ".join(describe_reason(r) for r in result.violation_reasons))
    if controller.store_pending:
        st.error("Your result could not be saved yet. Please do not close this page.")
        if st.button("Retry saving", type="primary"):
            try:
                controller.retry_store()
                st.rerun()
            except PersistenceError as e:
                st.error(f"Still failing: {e}")
    else:
        st.caption(f"Result saved ({result.id}).")


@st.fragment(run_every=1)
def countdown(controller: SessionController):
    remaining = controller.tick()
    if controller.state is not SessionState.ACTIVE:
        st.rerun()
    label = format_time(remaining)
    if remaining <= WARNING_SECONDS:
        st.error(f"Time left: {label}")
    else:
        st.metric("Time left", label)


# ----- Take Exam -----
if page == "Take Exam":
    st.header("Take Exam")
    controller = None
    student_id = st.session_state.get("student_id") or st.query_params.get("sid")
    if student_id:
        controller = get_controllers().get(student_id)

    if controller is None:
        st.caption(f"{EXAM_DURATION_MINUTES} minutes · one attempt · {MAX_VIOLATIONS} violations end the exam")
        with st.form("login"):
            full_name = st.text_input("Full name")
            class_tag = st.selectbox("Class", CLASS_TAGS)
            subject = st.selectbox("Subject", SUBJECTS, index=SUBJECTS.index("Basic Science"))
            begin = st.form_submit_button("Start exam", type="primary")
        if begin:
            if not full_name.strip():
                st.error("Enter your full name.")
                st.stop()
            student = lookup_student(full_name, class_tag)
            if not student:
                st.error("Student not found. Check your name and class.")
                st.stop()
            try:
                controller = open_exam(student["id"], class_tag, subject)
            except AlreadySubmittedError:
                st.error("You have already taken this exam.")
                st.stop()
            except ExamError as e:
                st.error(f"Could not start the exam: {e}")
                st.stop()
            st.session_state["student_id"] = student["id"]
            st.query_params["sid"] = student["id"]
            st.query_params["page"] = "Take Exam"
            st.rerun()
        st.stop()

    relay_events(controller)
    if controller.result is not None:
        render_result(controller)
        if st.button("Log out"):
            st.session_state.pop("student_id", None)
            st.query_params.clear()
            if controller.stored:
                get_controllers().pop(controller.session.student_id, None)
            st.rerun()
        st.stop()

    components.html(BRIDGE_JS.replace("__GAP__", str(DEVTOOLS_GAP_PX)).replace("__OFF__", "false"), height=0)
    countdown(controller)

    progress = controller.progress()
    st.sidebar.progress(progress["answered"] / progress["total_questions"] if progress["total_questions"] else 0)
    st.sidebar.caption(f"{progress['answered']}/{progress['total_questions']} answered")

    if progress["violations"]:
        last = controller.monitor.log[-1]
        st.warning(
            f"Warning {progress['violations']}/{progress['max_violations']}: {describe_reason(last.reason_code)}. "
            "Reaching the limit submits your exam."
        )
    flash = st.session_state.pop("flash", None)
    if flash:
        st.error(flash)

    q = controller.current_question()
    st.subheader(f"Question {progress['current_question']} of {progress['total_questions']}")
    st.write(q.text)
    key = f"answer_{controller.session.id}_{q.id}"
    st.radio(
        "Choose one:",
        options=list(range(len(q.options))),
        format_func=lambda i: f"{OPTION_LABELS[i]}. {q.options[i]}",
        index=controller.selected_option(q.id),
        key=key,
        on_change=record_answer,
        args=(controller, q.id, key),
    )

    col1, col2, col3 = st.columns([1, 1, 2])
    with col1:
        if st.button("← Previous", disabled=progress["current_question"] == 1):
            controller.navigate("previous")
            st.rerun()
    with col2:
        if st.button("Next →", disabled=progress["current_question"] == progress["total_questions"]):
            controller.navigate("next")
            st.rerun()
    with col3:
        if st.button("Submit exam", type="primary"):
            try:
                controller.submit()
            except PersistenceError:
                st.session_state["flash"] = "Saving your result failed."
            except SessionClosedError as e:
                st.session_state["flash"] = str(e)
            st.rerun()

# ----- Class Results -----
elif page == "Class Results":
    st.header("Class Results")
    class_tag = st.selectbox("Class", CLASS_TAGS)
    subject = st.selectbox("Subject", ["(all)"] + SUBJECTS)
    subject = None if subject == "(all)" else subject
    students = []
    try:
        if DEMO_MODE:
            rows = [
                r.to_row() for r in get_demo_backend()["results"].results.values()
                if r.class_tag == class_tag and (subject is None or r.subject == subject)
            ]
        else:
            from db import get_question_counts, get_results_by_class, get_students_by_class

            rows = get_results_by_class(class_tag, subject)
            students = get_students_by_class(class_tag)
            counts = get_question_counts(class_tag)
            st.caption("Questions in bank: " + (", ".join(f"{s}: {n}" for s, n in sorted(counts.items())) or "none"))
    except Exception as e:
        st.error(f"Could not load results. Check DB and .env (SUPABASE_URL, SUPABASE_KEY). {e}")
        st.stop()

    summary = summarize_results(rows)
    col1, col2, col3, col4 = st.columns(4)
    with col1:
        st.metric("Completed", summary["completed"])
    with col2:
        st.metric("Average", f"{summary['average_percentage']}%")
    with col3:
        st.metric("Flagged", summary["flagged"])
    with col4:
        st.metric("Force-submitted", summary["forced"])
    if summary["grades"]:
        st.bar_chart({"students": summary["grades"]})
    names = {s["id"]: s["full_name"] for s in students}
    if rows:
        st.dataframe(
            [
                {
                    "Student": names.get(r.get("student_id"), r.get("student_id")),
                    "Subject": r.get("subject"),
                    "Score": f"{r.get('score')}/{r.get('total_questions')}",
                    "%": r.get("percentage"),
                    "Grade": r.get("grade"),
                    "Time": format_time(r.get("time_taken") or 0),
                    "Cause": r.get("submission_cause"),
                    "Flags": ", ".join(describe_reason(c) for c in r.get("cheating_flags") or []),
                }
                for r in rows
            ],
            use_container_width=True,
        )
    else:
        st.info("No results yet for this class.")

    submitted = [s for s in students if s.get("has_submitted")]
    if submitted:
        with st.expander(f"Allow a retake ({len(submitted)}/{len(students)} submitted)"):
            retake = st.selectbox("Student", submitted, format_func=lambda s: s["full_name"])
            if st.button("Reset submission"):
                from db import reset_student_submission

                reset_student_submission(retake["id"])
                get_controllers().pop(retake["id"], None)
                st.success(f"{retake['full_name']} can take the exam again.")
