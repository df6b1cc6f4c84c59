# main.py
import html
import logging
import uuid
from collections import OrderedDict
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel

from lookup_config import CORS_ORIGINS, LOG_LEVEL, MAX_TABS
from lookup_models import (InvalidInput, PlaceCandidate, PlaceNotFound, RouteLookupError, RouteNotFound,
                           ServiceUnavailable, Superseded)
from route_lookup import RouteLookupClient

logging.basicConfig(level=LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
logger = logging.getLogger(__name__)


# -------------------------- Tabs --------------------------------
class TabRegistry:
    """
    One RouteLookupClient per browser tab, created on first use.

    At most ``max_tabs`` clients are kept; the least recently used one is
    closed when a new tab would go over the limit.
    """

    def __init__(self, client_factory: Optional[Callable[[], RouteLookupClient]] = None,
                 max_tabs: int = MAX_TABS):
        if max_tabs < 1:
            raise ValueError("max_tabs must be >= 1")
        self.client_factory = client_factory or RouteLookupClient
        self.max_tabs = max_tabs
        self.clients: "OrderedDict[str, RouteLookupClient]" = OrderedDict()

    @staticmethod
    def new_tab_id() -> str:
        return uuid.uuid4().hex

    async def get(self, tab: str) -> RouteLookupClient:
        if not tab:
            raise InvalidInput("missing tab id")
        client = self.clients.get(tab)
        if client is not None:
            self.clients.move_to_end(tab)
            return client

        while len(self.clients) >= self.max_tabs:
            old_tab, old_client = self.clients.popitem(last=False)
            logger.info("[APP] evicting idle tab %s", old_tab)
            await old_client.close()

        client = self.client_factory()
        self.clients[tab] = client
        return client

    async def close_tab(self, tab: str) -> None:
        client = self.clients.pop(tab, None)
        if client is not None:
            await client.close()

    async def close_all(self) -> None:
        for tab in list(self.clients):
            await self.close_tab(tab)


# -------------------------- Errors --------------------------------
ERROR_STATUS = (
    (InvalidInput, 400),
    (PlaceNotFound, 404),
    (RouteNotFound, 404),
    (Superseded, 409),
    (ServiceUnavailable, 502),
)


def error_status(e: RouteLookupError) -> int:
    for cls, code in ERROR_STATUS:
        if isinstance(e, cls):
            return code
    return 500


def error_message(e: RouteLookupError) -> str:
    if isinstance(e, RouteNotFound):
        return "No route exists between these places."
    if isinstance(e, ServiceUnavailable):
        return "The routing or geocoding service is unavailable right now. Please try again."
    return str(e) or "Error calculating the route."


def error_html(e: RouteLookupError) -> HTMLResponse:
    return HTMLResponse(f"<h3 style='color:red;'>{html.escape(error_message(e))}</h3>",
                        status_code=error_status(e))


class SelectRequest(BaseModel):
    tab: str
    field: str
    display_name: str
    lat: float
    lon: float


# -------------------------- Page --------------------------------
PAGE = """<!doctype html>
<html>
<head>
<meta charset="utf-8">
<title>GreenRoutes</title>
<style>
body { font-family: Arial, sans-serif; margin: 24px; }
.field { position: relative; display: inline-block; margin-right: 12px; }
.sugg { display: none; position: absolute; background: #fff; border: 1px solid #ccc; z-index: 1000; width: 360px; }
.sugg-item { padding: 4px 8px; cursor: pointer; }
.sugg-item:hover { background: #eef; }
.muted { color: #666; }
</style>
</head>
<body>
<h2>GreenRoutes: eco vs fast</h2>
<div class="field"><input id="origin" placeholder="Origin" size="40"><div id="sugg_origin" class="sugg"></div></div>
<div class="field"><input id="destination" placeholder="Destination" size="40"><div id="sugg_destination" class="sugg"></div></div>
<select id="mode"><option value="eco">Eco</option><option value="fast">Fast</option></select>
<button id="calc_btn">Calculate</button>
<div id="result" class="muted"></div>
<script>
const TAB = "__TAB__";
let hasRoutes = false;

function attachSuggest(field) {
  const input = document.getElementById(field);
  const list = document.getElementById("sugg_" + field);
  input.addEventListener("input", async () => {
    hasRoutes = false;
    const q = encodeURIComponent(input.value);
    const resp = await fetch(`/suggest?tab=${TAB}&field=${field}&q=${q}`);
    const data = await resp.json();
    if (data.superseded) return;
    if (!data.suggestions.length) { list.style.display = "none"; list.innerHTML = ""; return; }
    list.innerHTML = "";
    for (const s of data.suggestions) {
      const el = document.createElement("div");
      el.className = "sugg-item";
      el.textContent = s.display_name;
      el.onclick = async () => {
        input.value = s.display_name;
        list.style.display = "none";
        await fetch("/select", {method: "POST", headers: {"Content-Type": "application/json"},
          body: JSON.stringify({tab: TAB, field: field, display_name: s.display_name, lat: s.lat, lon: s.lon})});
      };
      list.appendChild(el);
    }
    list.style.display = "block";
  });
}

async function show(url) {
  const btn = document.getElementById("calc_btn");
  const box = document.getElementById("result");
  btn.disabled = true;
  box.textContent = "Calculating routes...";
  try {
    const resp = await fetch(url);
    if (resp.status === 409) return;
    box.innerHTML = await resp.text();
    hasRoutes = resp.ok;
  } catch (e) {
    box.textContent = "Error calculating the route.";
  } finally {
    btn.disabled = false;
  }
}

function calculate() {
  const o = encodeURIComponent(document.getElementById("origin").value);
  const d = encodeURIComponent(document.getElementById("destination").value);
  const m = document.getElementById("mode").value;
  show(`/calculate?tab=${TAB}&origin=${o}&destination=${d}&mode=${m}`);
}

attachSuggest("origin");
attachSuggest("destination");
document.getElementById("calc_btn").addEventListener("click", calculate);
for (const id of ["origin", "destination"]) {
  document.getElementById(id).addEventListener("keydown", e => { if (e.key === "Enter") calculate(); });
}
document.getElementById("mode").addEventListener("change", () => {
  if (hasRoutes) show(`/switch?tab=${TAB}&mode=${document.getElementById("mode").value}`);
});
</script>
</body>
</html>
"""


# -------------------------- App --------------------------------
def create_app(registry: Optional[TabRegistry] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        logger.info("[APP] closing %d tab(s)", len(app.state.registry.clients))
        await app.state.registry.close_all()

    app = FastAPI(title="GreenRoutes Route Lookup", lifespan=lifespan)
    app.state.registry = registry or TabRegistry()

    app.add_middleware(
        CORSMiddleware,
        allow_origins=CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/", response_class=HTMLResponse)
    def home():
        tab = app.state.registry.new_tab_id()
        return HTMLResponse(PAGE.replace("__TAB__", tab))

    @app.get("/suggest")
    async def suggest(tab: str = Query(...), field: str = Query(...), q: str = Query("")):
        try:
            client = await app.state.registry.get(tab)
            result = await client.suggest(field, q)
        except RouteLookupError as e:
            return JSONResponse({"error": str(e)}, status_code=error_status(e))
        if result is None:
            return {"suggestions": [], "superseded": True}
        return {"suggestions": [c.to_dict() for c in result], "superseded": False}

    @app.post("/select")
    async def select(req: SelectRequest):
        try:
            client = await app.state.registry.get(req.tab)
            client.select(req.field, PlaceCandidate(req.display_name, req.lat, req.lon))
        except RouteLookupError as e:
            return JSONResponse({"error": str(e)}, status_code=error_status(e))
        return {"field": req.field, "display_name": req.display_name}

    @app.get("/calculate", response_class=HTMLResponse)
    async def calculate(tab: str = Query(...), origin: str = Query(""), destination: str = Query(""),
                        mode: str = Query("eco")):
        try:
            client = await app.state.registry.get(tab)
            await client.calculate(origin, destination, mode)
            view = await client.render()
        except RouteLookupError as e:
            return error_html(e)
        return HTMLResponse(view.html)

    @app.get("/switch", response_class=HTMLResponse)
    async def switch(tab: str = Query(...), mode: str = Query(...)):
        try:
            client = await app.state.registry.get(tab)
            client.switch_profile(mode)
            view = await client.render()
        except RouteLookupError as e:
            return error_html(e)
        return HTMLResponse(view.html)

    @app.get("/session")
    async def session(tab: str = Query(...)):
        try:
            client = await app.state.registry.get(tab)
        except RouteLookupError as e:
            return JSONResponse({"error": str(e)}, status_code=error_status(e))
        if client.session is None:
            return {"session": None}
        return {"session": client.session.to_dict()}

    return app


app = create_app()

# ---------------------------
# If run as main
# ---------------------------
if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8080, reload=True)
