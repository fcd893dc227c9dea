BASE_PROMPT = (
    "For all designs I ask you to make, have them be beautiful, not cookie cutter. "
    "Make webpages that are fully featured and worthy for production.\n\n"
    "By default, this template supports JSX syntax with Tailwind CSS classes, React hooks, "
    "and Lucide React for icons. Do not install other packages for UI themes, icons, etc "
    "unless absolutely necessary or I request them.\n\n"
    "Use icons from lucide-react for logos.\n"
)

TEMPLATE_SYSTEM_PROMPT = (
    "Return either node or react based on what do you think this project should be. "
    "Only return a single word either 'node' or 'react'. Do not return anything extra."
)


def get_system_prompt() -> str:
    return """You are Buildify, an expert AI assistant and exceptional senior software developer.

<system_constraints>
  The project runs inside an in-browser sandbox with Node.js. It can run npm
  packages and a Vite dev server. There is no native binary support, no pip and
  no system package manager. Prefer Vite for web servers and plain JavaScript
  packages for everything else.
</system_constraints>

<output_format>
  Describe every change to the project with the following tags. Text outside the
  tags is shown to the user as commentary and is never executed.

  - Create or overwrite a file. The body is the COMPLETE new content of the file,
    never a diff and never a placeholder like "rest of the code unchanged":
      <file path="src/App.jsx">
      ...full file content...
      </file>
  - Create an empty folder:
      <folder path="public/images"/>
  - A shell command you would run (for the user's information):
      <shell>npm install lucide-react</shell>

  Paths are relative to the project root and use forward slashes.
  Always keep package.json up to date when you add a dependency, since the
  project is installed from it.
  Emit files in the order they should be created. Writing the same path twice
  is allowed; the later content wins.
</output_format>

Be concise in commentary. Do not explain the tags. Start with the files right
away when asked to build something.
"""


def artifact_intro(template: str) -> str:
    return (
        "Here is an artifact that contains all files of the project visible to you.\n"
        "Consider the contents of ALL files in the project.\n\n"
        f"{template}\n\n"
        "Here is a list of files that exist on the file system but are not being shown to you:\n\n"
        "  - .gitignore\n"
        "  - package-lock.json\n"
    )


REACT_TEMPLATE = """<boltArtifact id="project-import" title="Project Files">
<file path="package.json">
{
  "name": "vite-react-typescript-starter",
  "private": true,
  "version": "0.0.0",
  "type": "module",
  "scripts": {
    "dev": "vite",
    "build": "vite build",
    "preview": "vite preview"
  },
  "dependencies": {
    "lucide-react": "^0.344.0",
    "react": "^18.3.1",
    "react-dom": "^18.3.1"
  },
  "devDependencies": {
    "@vitejs/plugin-react": "^4.3.1",
    "autoprefixer": "^10.4.18",
    "postcss": "^8.4.35",
    "tailwindcss": "^3.4.1",
    "vite": "^5.4.2"
  }
}
</file>
<file path="index.html">
<!doctype html>
<html lang="en">
  <head>
    <meta charset="UTF-8" />
    <meta name="viewport" content="width=device-width, initial-scale=1.0" />
    <title>Vite + React</title>
  </head>
  <body>
    <div id="root"></div>
    <script type="module" src="/src/main.jsx"></script>
  </body>
</html>
</file>
<file path="vite.config.js">
import { defineConfig } from 'vite';
import react from '@vitejs/plugin-react';

export default defineConfig({
  plugins: [react()],
  optimizeDeps: {
    exclude: ['lucide-react'],
  },
});
</file>
<file path="tailwind.config.js">
/** @type {import('tailwindcss').Config} */
export default {
  content: ['./index.html', './src/**/*.{js,jsx}'],
  theme: {
    extend: {},
  },
  plugins: [],
};
</file>
<file path="postcss.config.js">
export default {
  plugins: {
    tailwindcss: {},
    autoprefixer: {},
  },
};
</file>
<file path="src/index.css">
@tailwind base;
@tailwind components;
@tailwind utilities;
</file>
<file path="src/main.jsx">
import { StrictMode } from 'react';
import { createRoot } from 'react-dom/client';
import App from './App.jsx';
import './index.css';

createRoot(document.getElementById('root')).render(
  <StrictMode>
    <App />
  </StrictMode>
);
</file>
<file path="src/App.jsx">
function App() {
  return (
    <div className="min-h-screen bg-gray-100 flex items-center justify-center">
      <p>Start prompting (or editing) to see magic happen :)</p>
    </div>
  );
}

export default App;
</file>
</boltArtifact>"""


NODE_TEMPLATE = """<boltArtifact id="project-import" title="Project Files">
<file path="index.js">
// run `node index.js` in the terminal

console.log(`Hello Node.js v${process.versions.node}!`);
</file>
<file path="package.json">
{
  "name": "node-starter",
  "private": true,
  "scripts": {
    "dev": "node index.js",
    "test": "echo \\"Error: no test specified\\" && exit 1"
  }
}
</file>
</boltArtifact>"""
