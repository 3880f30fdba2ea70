# Interactive Feedback MCP UI page
# Developed by Fábio Ferreira (https://x.com/fabiomlferreira)
# Inspired by/related to dotcursorrules.com (https://dotcursorrules.com/)

INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="utf-8">
<title>Interactive Feedback MCP</title>
<style>
  body { background-color: #121212; color: #e0e0e0; font-family: sans-serif; margin: 0; padding: 20px; }
  .group { border: 1px solid #404040; border-radius: 12px; background-color: #1e1e1e; padding: 16px; margin-bottom: 16px; }
  .row { display: flex; gap: 12px; align-items: center; margin-bottom: 12px; }
  .prompt { background-color: #404040; border-radius: 6px; padding: 8px 12px; white-space: pre-wrap; }
  input[type=text], textarea { flex: 1; background-color: #252525; color: #e0e0e0; border: 1px solid #404040; border-radius: 6px; padding: 10px 14px; }
  textarea { width: 100%; box-sizing: border-box; min-height: 96px; }
  button { background-color: #2a2a2a; color: #e0e0e0; border: 1px solid #404040; border-radius: 6px; padding: 8px 16px; cursor: pointer; }
  button.primary { background-color: #007bff; border-color: #007bff; color: #ffffff; }
  button.danger { background-color: #dc3545; border-color: #dc3545; color: #ffffff; }
  pre#log { background-color: #0a0a0a; color: #c0c0c0; border: 1px solid #333333; border-radius: 4px; padding: 8px; height: 240px; overflow: auto; white-space: pre-wrap; }
  #files li { cursor: pointer; list-style: none; padding: 2px 0; }
  #toast { position: fixed; bottom: 20px; right: 20px; background-color: #dc3545; color: #ffffff; padding: 10px 16px; border-radius: 6px; display: none; }
  .muted { color: #a0a0a0; font-size: 12px; }
</style>
</head>
<body>
<div class="group">
  <div class="row"><strong id="project"></strong><span class="muted" id="status"></span></div>
  <div class="prompt" id="prompt"></div>
</div>

<button id="toggle-command">Show command section</button>

<div class="group" id="command-section" style="display: none; margin-top: 16px;">
  <div class="row">
    <input type="text" id="command" placeholder="Command to run in the project directory">
    <button class="primary" id="run">Run</button>
    <button class="danger" id="stop">Stop</button>
  </div>
  <div class="row">
    <label><input type="checkbox" id="auto"> Execute automatically on next run</label>
    <button id="save">Save configuration</button>
    <button id="clear">Clear console</button>
  </div>
  <pre id="log"></pre>
  <div class="muted" id="cwd"></div>
  <ul id="files"></ul>
</div>

<div class="group">
  <textarea id="feedback" placeholder="Your feedback (Ctrl+Enter to submit)"></textarea>
  <div class="row" style="margin-top: 12px;"><button class="primary" id="submit">Send feedback</button></div>
</div>

<div id="toast"></div>

<script>
const $ = (id) => document.getElementById(id);
let browsePath = "";

function toast(message) {
  const el = $("toast");
  el.textContent = message;
  el.style.display = "block";
  setTimeout(() => { el.style.display = "none"; }, 4000);
}

async function api(method, url, body) {
  const options = { method, headers: { "Content-Type": "application/json" } };
  if (body !== undefined) options.body = JSON.stringify(body);
  const response = await fetch(url, options);
  const data = await response.json();
  if (!response.ok || data.success === false) throw new Error(data.error || response.statusText);
  return data;
}

function setCommandVisible(visible) {
  $("command-section").style.display = visible ? "block" : "none";
  $("toggle-command").textContent = visible ? "Hide command section" : "Show command section";
}

async function loadConfig() {
  try {
    const data = await api("GET", "/api/config");
    $("project").textContent = data.projectDirectory;
    $("prompt").textContent = data.prompt;
    $("command").value = data.config.run_command || "";
    $("auto").checked = !!data.config.execute_automatically;
    setCommandVisible(!!data.config.command_section_visible);
  } catch (e) { toast(e.message); }
}

async function browse(path) {
  try {
    const data = await api("GET", "/api/browse-files?path=" + encodeURIComponent(path));
    browsePath = path;
    $("cwd").textContent = "/" + path;
    const list = $("files");
    list.innerHTML = "";
    if (path) {
      const up = document.createElement("li");
      up.textContent = "..";
      up.onclick = () => browse(path.split("/").slice(0, -1).join("/"));
      list.appendChild(up);
    }
    for (const item of data.items) {
      const li = document.createElement("li");
      li.textContent = (item.type === "directory" ? "[dir] " : "") + item.name;
      if (item.type === "directory") li.onclick = () => browse(item.path);
      list.appendChild(li);
    }
  } catch (e) { toast(e.message); }
}

function connect() {
  const protocol = window.location.protocol === "https:" ? "wss:" : "ws:";
  const ws = new WebSocket(protocol + "//" + window.location.host + "/");
  ws.onmessage = (event) => {
    const message = JSON.parse(event.data);
    const log = $("log");
    if (message.type === "logs") {
      log.textContent = message.data;
    } else if (message.type === "log") {
      log.textContent += message.data;
    } else if (message.type === "processStatus") {
      const s = message.data;
      if (s.running) $("status").textContent = "running";
      else if (s.error) $("status").textContent = "error: " + s.error;
      else if (s.exitCode !== undefined) $("status").textContent = "exited with code " + s.exitCode;
      else $("status").textContent = "";
    }
    log.scrollTop = log.scrollHeight;
  };
  ws.onclose = () => setTimeout(connect, 3000);
}

$("toggle-command").onclick = async () => {
  const visible = $("command-section").style.display === "none";
  setCommandVisible(visible);
  try { await api("POST", "/api/config", { command_section_visible: visible }); } catch (e) { toast(e.message); }
};
$("run").onclick = async () => {
  const command = $("command").value.trim();
  if (!command) { toast("Please enter a command to run"); return; }
  try { await api("POST", "/api/run-command", { command }); } catch (e) { toast(e.message); }
};
$("command").addEventListener("keydown", (e) => { if (e.key === "Enter") $("run").click(); });
$("stop").onclick = async () => { try { await api("POST", "/api/stop-command"); } catch (e) { toast(e.message); } };
$("clear").onclick = async () => { try { await api("POST", "/api/clear-logs"); } catch (e) { toast(e.message); } };
$("save").onclick = async () => {
  try {
    await api("POST", "/api/config", { run_command: $("command").value, execute_automatically: $("auto").checked });
    toast("Configuration saved for this project.");
  } catch (e) { toast(e.message); }
};
$("submit").onclick = async () => {
  const feedback = $("feedback").value.trim();
  if (!feedback) { toast("Please enter your feedback"); return; }
  $("submit").disabled = true;
  try {
    await api("POST", "/api/submit-feedback", { feedback });
    document.body.innerHTML = "<p>Feedback sent. You can close this tab.</p>";
  } catch (e) {
    $("submit").disabled = false;
    toast(e.message);
  }
};
$("feedback").addEventListener("keydown", (e) => { if (e.key === "Enter" && e.ctrlKey) $("submit").click(); });

loadConfig();
browse(browsePath);
connect();
</script>
</body>
</html>
"""
