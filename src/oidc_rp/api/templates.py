"""HTML templates for the welcome and dashboard pages.

Values are substituted with ``str.format``; callers escape everything that
comes from the IdP or the query string.
"""

_BASE_STYLE = """
        * {{ margin: 0; padding: 0; box-sizing: border-box; }}
        body {{ font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
               background: #f5f5f5; min-height: 100vh; }}
        .btn {{ display: inline-block; background: #667eea; color: white; padding: 12px 30px;
               text-decoration: none; border-radius: 5px; font-weight: 600; font-size: 14px; }}
        .btn:hover {{ background: #5568d3; }}
        .btn-danger {{ background: #e74c3c; }}
        .btn-danger:hover {{ background: #c0392b; }}
        .error {{ background: #fee; color: #c33; padding: 15px; border-radius: 5px;
                 margin-bottom: 20px; border: 1px solid #fcc; }}
"""

WELCOME_PAGE = """
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>Sign in</title>
    <style>""" + _BASE_STYLE + """
        .container {{ background: white; padding: 40px; border-radius: 10px; max-width: 400px;
                     margin: 80px auto; text-align: center; box-shadow: 0 10px 40px rgba(0,0,0,0.2); }}
        h1 {{ color: #333; margin-bottom: 10px; font-size: 28px; }}
        p {{ color: #666; margin-bottom: 30px; line-height: 1.6; }}
    </style>
</head>
<body>
    <div class="container">
        <h1>Welcome</h1>
        <p>Please sign in with your {provider} account to continue</p>
        {error}
        <a href="/auth/login" class="btn">Sign in</a>
    </div>
</body>
</html>
"""

ERROR_BLOCK = '<div class="error">{message}</div>'

DASHBOARD_PAGE = """
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <title>Dashboard</title>
    <style>""" + _BASE_STYLE + """
        .header {{ background: white; padding: 20px; display: flex; justify-content: space-between;
                  align-items: center; box-shadow: 0 2px 4px rgba(0,0,0,0.1); }}
        .container {{ max-width: 1200px; margin: 40px auto; padding: 0 20px; }}
        .card {{ background: white; padding: 30px; border-radius: 10px; margin-bottom: 20px; }}
        .info-item {{ padding: 15px; background: #f9f9f9; border-left: 4px solid #667eea; margin-bottom: 10px; }}
        .info-label {{ color: #666; font-size: 12px; text-transform: uppercase; font-weight: 600; }}
        .json-viewer {{ background: #2d2d2d; color: #f8f8f2; padding: 20px; border-radius: 5px;
                       overflow-x: auto; font-family: monospace; font-size: 14px; }}
    </style>
</head>
<body>
    <div class="header">
        <h1>Dashboard</h1>
        <a href="/auth/logout" class="btn btn-danger">Logout</a>
    </div>
    <div class="container">
        <div class="card">
            <h2>Welcome, {display_name}!</h2>
        </div>
        <div class="card">
            <h2>User Information</h2>
            {info_items}
        </div>
        <div class="card">
            <h2>Raw User Data (JSON)</h2>
            <div class="json-viewer"><pre>{raw_claims}</pre></div>
        </div>
    </div>
</body>
</html>
"""

INFO_ITEM = (
    '<div class="info-item"><div class="info-label">{label}</div>'
    "<div>{value}</div></div>"
)
