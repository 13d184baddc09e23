from askme.api.cli import main

raise SystemExit(main())
