import re

DEFAULT_PLAYWRIGHT_ARGS = ["test", "--project=jr", "--project=spjr"]

LOG_LIMIT_CHARS = 8000
SITE_LOG_LIMIT = 30
HTTP_TIMEOUT_SECONDS = 15.0
RERUN_DELAY_SECONDS = 0.25

REPORT_DIR_NAME = "playwright-report"
RESULTS_DIR_NAME = "test-results"
REPORT_HTML_URL = "/playwright-report/index.html"
REPORT_JSON_URL = "/playwright-report/report.json"

# Numbered artifact folders (artifacts-1, artifacts-2, ...) copied next to the project root.
ARTIFACT_DIR_RE = re.compile(r"^artifacts-\d+$")

# Playwright project name -> directory fragments its spec files live under.
PROJECT_TEST_DIRS = {
    "spjr": ("tests/spjr/", "spjr/"),
    "jr": ("tests/jr/", "jr/"),
}

_HTML = r"text\/html|charset"

DEFAULT_SITES = [
    {
        "key": "jr",
        "name": "WBS Jasa Raharja",
        "base": "https://wbs.jasaraharja.co.id",
        "checks": [
            {"label": "Home", "path": "/", "expect": {"ok": [200], "contentType": _HTML}},
            {
                "label": "Ruang Lingkup",
                "path": "/page/ruang-lingkup",
                "expect": {"ok": [200], "contentType": _HTML},
            },
            {
                "label": "Perlindungan Pelapor",
                "path": "/page/perlindungan-pelapor",
                "expect": {"ok": [200], "contentType": _HTML},
            },
            {
                "label": "Manual (PDF)",
                "path": "/page/manual",
                "expect": {"ok": [200, 206], "contentType": r"application\/pdf|octet-stream", "minBytes": 10000},
            },
            {
                "label": "Tambah Laporan",
                "path": "/laporan/tambah",
                "expect": {"ok": [200, 302], "contentType": _HTML},
            },
            {"label": "Register", "path": "/register", "expect": {"ok": [200, 302], "contentType": _HTML}},
            {"label": "Login", "path": "/login", "expect": {"ok": [200, 302], "contentType": _HTML}},
        ],
    },
    {
        "key": "spjr",
        "name": "SP Jasa Raharja",
        "base": "https://sp-jasaraharja.id",
        "checks": [
            {"label": "Home", "path": "/", "expect": {"ok": [200], "contentType": _HTML}},
            {"label": "Berita", "path": "/all-news", "expect": {"ok": [200], "contentType": _HTML}},
            {"label": "Sejarah", "path": "/sejarah", "expect": {"ok": [200]}},
            {"label": "Visi Misi", "path": "/visi-misi", "expect": {"ok": [200]}},
            {"label": "Struktur", "path": "/struktur", "expect": {"ok": [200]}},
            {"label": "Tugas Fungsi", "path": "/tugas-fungsi", "expect": {"ok": [200]}},
            {"label": "Laporan", "path": "/laporan", "expect": {"ok": [200]}},
        ],
    },
]
