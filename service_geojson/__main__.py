from service_geojson.app.cli import main

raise SystemExit(main())
