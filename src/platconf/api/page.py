"""Static status page served on GET /."""

STATUS_PAGE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Platform update</title>
  <style>
    body { font-family: sans-serif; background: #f4f4f4; color: #333; margin: 0; }
    main { max-width: 32em; margin: 6em auto; padding: 2em; background: #fff;
           border-radius: 4px; box-shadow: 0 1px 3px rgba(0, 0, 0, 0.2); }
    h1 { font-size: 1.4em; margin-top: 0; }
    progress { width: 100%; height: 1.2em; }
    .failed { color: #b00; }
    #what { font-size: 0.9em; color: #666; min-height: 1.2em; }
  </style>
</head>
<body>
  <main>
    <h1>Updating the platform</h1>
    <p id="status">Waiting for status...</p>
    <progress id="progress" max="100"></progress>
    <p id="what"></p>
  </main>
  <script>
    function refresh() {
      fetch("/json", {cache: "no-store"})
        .then(function (response) { return response.json(); })
        .then(function (data) {
          var status = document.getElementById("status");
          var progress = document.getElementById("progress");
          status.textContent = data.status || "Waiting for status...";
          status.className = data.status === "failed" ? "failed" : "";
          if (data.progress === null) {
            progress.removeAttribute("value");
          } else {
            progress.value = data.progress;
          }
          document.getElementById("what").textContent = data.what || "";
        })
        .catch(function () {});
    }
    refresh();
    setInterval(refresh, 2000);
  </script>
</body>
</html>
"""
