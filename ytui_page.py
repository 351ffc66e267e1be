"""The single-page browser UI served at ``/``."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

from ytui_config import INDEX_HTML_PATH

logger = logging.getLogger(__name__)


INDEX_HTML = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <meta name="viewport" content="width=device-width, initial-scale=1" />
  <title>yt-dlp UI (local)</title>
  <style>
    :root { color-scheme: light dark; }
    body { font-family: system-ui, sans-serif; margin: 0; }
    .wrap { max-width: 1100px; margin: 0 auto; padding: 18px; }
    .row { display: flex; gap: 12px; flex-wrap: wrap; align-items: end; }
    .card { border: 1px solid rgba(127,127,127,0.25); border-radius: 14px; padding: 14px; margin-top: 14px; }
    .muted { opacity: 0.75; font-size: 13px; }
    label { display: block; font-size: 12px; opacity: 0.8; margin-bottom: 4px; }
    input[type="text"], input[type="number"], select { padding: 10px; border: 1px solid rgba(127,127,127,0.35); border-radius: 10px; }
    input[type="text"] { width: min(820px, 100%); }
    button { padding: 10px 12px; border: 1px solid rgba(127,127,127,0.35); border-radius: 10px; background: transparent; cursor: pointer; }
    button.primary { background: #2563eb; color: white; border-color: #2563eb; }
    button:disabled { opacity: 0.5; cursor: not-allowed; }
    table { width: 100%; border-collapse: collapse; margin-top: 10px; }
    th, td { padding: 8px; border-bottom: 1px solid rgba(127,127,127,0.2); text-align: left; }
    .log { height: 260px; overflow: auto; font-family: ui-monospace, monospace; font-size: 12px; white-space: pre-wrap; background: rgba(127,127,127,0.08); padding: 10px; border-radius: 12px; }
  </style>
</head>
<body>
  <div class="wrap">
    <h2>yt-dlp downloader (local)</h2>
    <div class="muted">Runs yt-dlp on this machine and streams its progress here. Only download videos you have rights to.</div>
    <div class="card" id="doctorCard" style="display:none;"><span id="doctorText"></span> <span class="muted" id="doctorCmd"></span></div>
    <div class="card">
      <div class="row">
        <div style="flex: 1 1 680px;">
          <label for="url">Video, playlist or channel URL</label>
          <input id="url" type="text" placeholder="https://www.youtube.com/..." />
        </div>
        <button id="infoBtn">Info</button>
        <button id="loadBtn" class="primary">Load list</button>
      </div>
      <div class="muted" id="info"></div>
      <div class="row" style="margin-top: 10px;">
        <div><label for="quality">Max height</label><select id="quality"><option value="">best</option></select></div>
        <label><input id="mp3" type="checkbox" /> MP3 audio</label>
        <label><input id="videoOnly" type="checkbox" /> Video only</label>
        <label><input id="useCookies" type="checkbox" /> Cookies from</label>
        <select id="browser"><option>chrome</option><option>edge</option><option>firefox</option></select>
        <button id="downloadBtn" class="primary">Download</button>
      </div>
      <table><thead><tr><th></th><th>Title</th><th>Video</th></tr></thead><tbody id="rows"></tbody></table>
    </div>
    <div class="card">
      <div class="row" style="justify-content: space-between;">
        <div><b>Progress</b> <span class="muted" id="status">Idle</span></div>
        <button id="clearLogBtn">Clear log</button>
      </div>
      <div class="log" id="log"></div>
      <ul id="files"></ul>
    </div>
  </div>
  <script>
    const el = (id) => document.getElementById(id);
    const state = { videos: [], selected: new Set(), jobId: localStorage.getItem("ytdlp_jobId") || "", evt: null };
    const log = (line) => { const box = el("log"); box.textContent += line + "\\n"; box.scrollTop = box.scrollHeight; };
    const setStatus = (s) => { el("status").textContent = s; };
    const escapeHtml = (s) => String(s).replace(/[&<>"']/g, (c) => ({"&":"&amp;","<":"&lt;",">":"&gt;","\\"":"&quot;","'":"&#39;"}[c]));
    async function api(url, body) {
      const opts = body === undefined ? {} : { method: "POST", headers: { "content-type": "application/json" }, body: JSON.stringify(body) };
      const res = await fetch(url, opts);
      const data = await res.json().catch(() => ({}));
      if (!res.ok) throw new Error(data.error || res.statusText);
      return data;
    }
    function render() {
      el("rows").innerHTML = state.videos.map((v) =>
        `<tr><td><input type="checkbox" data-id="${v.id}" ${state.selected.has(v.id) ? "checked" : ""}></td>` +
        `<td>${escapeHtml(v.title || "(no title)")}</td><td><a href="${v.url}" target="_blank" rel="noreferrer">open</a></td></tr>`).join("");
    }
    async function loadInfo() {
      const data = await api(`/api/info?url=${encodeURIComponent(el("url").value.trim())}`);
      if (!data.ok) { el("info").textContent = data.message; return; }
      el("info").textContent = `${data.title} [${data.id}]`;
      el("quality").innerHTML = `<option value="">best</option>` + data.qualities.map((q) => `<option value="${q}">${q}p</option>`).join("");
    }
    async function loadList() {
      setStatus("Loading list...");
      const data = await api(`/api/list?url=${encodeURIComponent(el("url").value.trim())}`);
      state.videos = data.videos || [];
      state.selected = new Set();
      setStatus(`Loaded ${state.videos.length} videos`);
      render();
    }
    async function showFiles(jobId) {
      const data = await api(`/api/files/${jobId}`);
      el("files").innerHTML = data.files.map((f, i) => `<li><a href="${data.downloadUrls[i]}">${escapeHtml(f)}</a></li>`).join("");
    }
    function connect(jobId) {
      if (state.evt) state.evt.close();
      setStatus(`Downloading... (job ${jobId})`);
      const evt = new EventSource(`/api/events/${encodeURIComponent(jobId)}`);
      state.evt = evt;
      evt.addEventListener("log", (e) => { try { log(JSON.parse(e.data).line); } catch { log(String(e.data)); } });
      evt.addEventListener("done", (e) => {
        const { exitCode } = JSON.parse(e.data);
        log(`[done] exitCode=${exitCode}`);
        setStatus(exitCode === 0 ? "Done" : "Done (with errors)");
        localStorage.removeItem("ytdlp_jobId");
        evt.close();
        showFiles(jobId).catch(() => {});
      });
      evt.addEventListener("error", () => setStatus("Disconnected (refresh to reconnect if the job is still running)"));
    }
    async function startDownload() {
      const body = {
        url: el("url").value.trim(),
        ids: Array.from(state.selected),
        quality: el("quality").value ? Number(el("quality").value) : null,
        mp3: el("mp3").checked,
        videoOnly: el("videoOnly").checked,
        cookiesFromBrowser: el("useCookies").checked ? el("browser").value : null,
      };
      const resp = await api("/api/download", body);
      localStorage.setItem("ytdlp_jobId", resp.jobId);
      log(`[start] jobId=${resp.jobId} items=${resp.count} dir=${resp.downloadsDir}`);
      connect(resp.jobId);
    }
    const fail = (e) => { setStatus("Error"); alert(e.message); };
    el("infoBtn").addEventListener("click", () => loadInfo().catch(fail));
    el("loadBtn").addEventListener("click", () => loadList().catch(fail));
    el("downloadBtn").addEventListener("click", () => startDownload().catch(fail));
    el("clearLogBtn").addEventListener("click", () => { el("log").textContent = ""; });
    el("rows").addEventListener("change", (e) => {
      const id = e.target.getAttribute("data-id");
      if (!id) return;
      if (e.target.checked) state.selected.add(id); else state.selected.delete(id);
    });
    if (state.jobId) { log(`[resume] reconnecting to job ${state.jobId}`); connect(state.jobId); }
    api("/api/doctor").then((d) => {
      el("doctorCard").style.display = "block";
      el("doctorCmd").textContent = d.ytDlpCommand ? `bin: ${d.ytDlpCommand}` : "";
      el("doctorText").textContent = d.ok ? d.message : `${d.message} (install yt-dlp or set YTDLP_BIN to its full path)`;
    }).catch(() => {});
  </script>
</body>
</html>
"""


def load_index_html(path: Optional[str] = INDEX_HTML_PATH) -> str:
    """Return the replacement page at ``path`` if it is readable, else the built-in one."""
    if path:
        try:
            return Path(path).read_text(encoding="utf-8")
        except OSError as exc:
            logger.warning("Cannot read UI page %s, using the built-in page: %s", path, exc)
    return INDEX_HTML
