import os
from stackaudit import create_app

app = create_app()

if __name__ == '__main__':
    # Debug/reloader off by default; enable with STACKAUDIT_DEBUG_SERVER=1
    debug_flag = os.environ.get('STACKAUDIT_DEBUG_SERVER', '0') == '1'
    port = int(os.environ.get('STACKAUDIT_PORT', '5000'))
    routes = sorted({r.rule for r in app.url_map.iter_rules()})
    print(f"[stackaudit] Route count={len(routes)} routes={routes}")
    app.run(host='0.0.0.0', port=port, debug=debug_flag, use_reloader=debug_flag)
