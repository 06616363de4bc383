"""Minimal HTML pages. Playback and PDF rendering happen in the browser."""

PLAYER_PAGE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Player</title>
  <script src="https://cdn.jsdelivr.net/npm/hls.js@1"></script>
  <style>body{margin:0;background:#000}video{width:100vw;height:100vh}</style>
</head>
<body>
  <video id="video" controls autoplay></video>
  <script>
    var src = {{ playlist_src|tojson }};
    var video = document.getElementById('video');
    if (window.Hls && Hls.isSupported()) {
      var hls = new Hls();
      hls.loadSource(src);
      hls.attachMedia(video);
    } else {
      video.src = src;
    }
  </script>
</body>
</html>
"""

DOWNLOADER_PAGE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>Downloader</title>
</head>
<body>
  <h1>Available qualities</h1>
  <p>{{ source_url }}</p>
  {% if variants %}
  <table>
    <tr><th>Resolution</th><th>Bandwidth</th><th>Codecs</th><th></th></tr>
    {% for v in variants %}
    <tr>
      <td>{{ v.resolution }}</td>
      <td>{{ v.bandwidth }}</td>
      <td>{{ v.codecs or "" }}</td>
      <td><a href="{{ url_for('player', url=v.absolute_url) }}">Play</a></td>
    </tr>
    {% endfor %}
  </table>
  {% else %}
  <p>Single-quality media playlist. <a href="{{ url_for('player', url=source_url) }}">Play</a></p>
  {% endif %}
</body>
</html>
"""

PDF_VIEWER_PAGE = """<!DOCTYPE html>
<html>
<head>
  <meta charset="utf-8">
  <title>{{ filename }}</title>
  <style>body{margin:0}iframe{border:0;width:100vw;height:calc(100vh - 2em)}</style>
</head>
<body>
  <a href="{{ download_src }}">Download {{ filename }}</a>
  <iframe src="{{ pdf_src }}"></iframe>
</body>
</html>
"""
